from flask import Blueprint, request, jsonify
from xpreview.services.submission_service import SubmissionService
from xpreview.services.review_service import ReviewService
from xpreview.services.consensus_service import ConsensusService
from xpreview.services.reviewer_pool_service import ReviewerPoolService
from xpreview.services.leaderboard_service import LeaderboardService
from xpreview.middleware.auth import require_auth, require_reviewer
from xpreview.utils.logger import get_logger

bp = Blueprint('submissions', __name__)
logger = get_logger(__name__)
submission_service = SubmissionService()
review_service = ReviewService()
consensus_service = ConsensusService()
pool_service = ReviewerPoolService()
leaderboard_service = LeaderboardService()


@bp.route('/', methods=['POST'])
@require_auth
def create_submission(current_user):
    """Submit content for evaluation"""
    try:
        data = request.get_json() or {}

        if 'url' not in data:
            return jsonify({'error': 'url is required'}), 400

        result = submission_service.create_submission(current_user['user_id'], data['url'], data.get('title'))
        if result.get('error'):
            return jsonify({'error': result['error']}), 400

        return jsonify({
            'message': 'Submission received',
            'submission_id': result['submission_id'],
            'platform': result['platform']
        }), 201

    except Exception as e:
        logger.error(f"Error creating submission: {str(e)}")
        return jsonify({'error': 'Failed to create submission'}), 500


@bp.route('/<int:submission_id>', methods=['GET'])
@require_auth
def get_submission(current_user, submission_id):
    result = submission_service.get_submission(submission_id)
    if result.get('error'):
        return jsonify({'error': result['error']}), 404

    if result['user_id'] != current_user['user_id'] and current_user['role'] != 'admin':
        return jsonify({'error': 'Insufficient permissions'}), 403

    return jsonify(result), 200


@bp.route('/assignments/<int:assignment_id>/review', methods=['POST'])
@require_auth
@require_reviewer
def submit_review(current_user, assignment_id):
    """Submit a peer review for an assignment"""
    try:
        data = request.get_json() or {}

        if 'xp_score' not in data:
            return jsonify({'error': 'xp_score is required'}), 400

        result = review_service.submit_review(
            assignment_id,
            current_user['user_id'],
            data['xp_score'],
            content_category=data.get('content_category'),
            quality_tier=data.get('quality_tier'),
            comments=data.get('comments')
        )
        if result.get('error'):
            return jsonify({'error': result['error']}), 400

        return jsonify(result), 201

    except Exception as e:
        logger.error(f"Error submitting review for assignment {assignment_id}: {str(e)}")
        return jsonify({'error': 'Failed to submit review'}), 500


@bp.route('/<int:submission_id>/consensus', methods=['GET'])
@require_auth
def get_consensus(current_user, submission_id):
    """Reviewer agreement for a submission"""
    try:
        result = consensus_service.detect(submission_id)
        if result is None:
            return jsonify({'error': 'No reviews for this submission'}), 404
        return jsonify(result.to_dict()), 200

    except Exception as e:
        logger.error(f"Error computing consensus for submission {submission_id}: {str(e)}")
        return jsonify({'error': 'Failed to compute consensus'}), 500


@bp.route('/workload', methods=['GET'])
@require_auth
@require_reviewer
def get_workload(current_user):
    return jsonify(pool_service.get_reviewer_workload(current_user['user_id'])), 200


@bp.route('/leaderboard', methods=['GET'])
@require_auth
def get_leaderboard(current_user):
    try:
        week = request.args.get('week', type=int)
        year = request.args.get('year', type=int)
        return jsonify({'entries': leaderboard_service.get_weekly_leaderboard(week, year)}), 200
    except Exception as e:
        logger.error(f"Error loading leaderboard: {str(e)}")
        return jsonify({'error': 'Failed to load leaderboard'}), 500
