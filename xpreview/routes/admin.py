from flask import Blueprint, request, jsonify
from sqlalchemy import func
from xpreview.middleware.auth import require_auth, require_admin
from xpreview.database import get_db
from xpreview.models import Submission, ReviewAssignment, AiEvaluation
from xpreview.services.assignment_service import AssignmentService
from xpreview.services.reviewer_pool_service import ReviewerPoolService, ReviewerPoolOptions
from xpreview.services.eligibility_service import EligibilityService
from xpreview.services.xp_propagation_service import XpPropagationService
from xpreview.services.xp_ledger import recalculate_user_totals
from xpreview.services.consensus_service import ConsensusService
from xpreview.services.ai_evaluation_queue import AiEvaluationQueue
from xpreview.services.deadline_monitor_service import DeadlineMonitorService
from xpreview.services.weekly_reset_service import WeeklyResetService
from config.config import Config
from xpreview.utils.validators import validate_reviewer_count
from xpreview.utils.logger import get_logger

bp = Blueprint('admin', __name__)
logger = get_logger(__name__)
assignment_service = AssignmentService()
pool_service = ReviewerPoolService()
eligibility_service = EligibilityService()
propagation_service = XpPropagationService(notification_service=assignment_service.notification_service)
consensus_service = ConsensusService(propagation_service)
evaluation_queue = AiEvaluationQueue(assignment_service=assignment_service)
deadline_monitor = DeadlineMonitorService(pool_service=pool_service)
weekly_reset = WeeklyResetService()


@bp.route('/dashboard', methods=['GET'])
@require_auth
@require_admin
def dashboard(current_user):
    """Pipeline counts by status"""
    try:
        with get_db() as db:
            submissions = dict(db.query(Submission.status, func.count(Submission.id)).group_by(Submission.status).all())
            assignments = dict(
                db.query(ReviewAssignment.status, func.count(ReviewAssignment.id)).group_by(ReviewAssignment.status).all()
            )
            evaluations = dict(
                db.query(AiEvaluation.status, func.count(AiEvaluation.id)).group_by(AiEvaluation.status).all()
            )

        return jsonify({
            'submissions': {status.value: count for status, count in submissions.items()},
            'assignments': {status.value: count for status, count in assignments.items()},
            'evaluations': {status.value: count for status, count in evaluations.items()}
        }), 200

    except Exception as e:
        logger.error(f"Error getting dashboard: {str(e)}")
        return jsonify({'error': 'Failed to get dashboard'}), 500


@bp.route('/submissions/<int:submission_id>/ensure-assignments', methods=['POST'])
@require_auth
@require_admin
def ensure_assignments(current_user, submission_id):
    """Retry automatic reviewer assignment for a submission"""
    try:
        data = request.get_json(silent=True) or {}

        minimum_reviewers = data.get('minimum_reviewers')
        if minimum_reviewers is not None:
            valid, error = validate_reviewer_count(minimum_reviewers)
            if not valid:
                return jsonify({'error': error}), 400

        allow_partial = data.get('allow_partial', Config.ALLOW_PARTIAL_REVIEW_ASSIGNMENTS)
        if not isinstance(allow_partial, bool):
            return jsonify({'error': 'allow_partial must be a boolean'}), 400

        with get_db() as db:
            submission = db.query(Submission).filter_by(id=submission_id).first()
            if not submission:
                return jsonify({'error': 'Submission not found'}), 404
            author_id = submission.user_id

        options = ReviewerPoolOptions(
            minimum_reviewers=minimum_reviewers,
            allow_partial_assignment=allow_partial
        )
        result = assignment_service.ensure_review_assignments(submission_id, author_id, options)
        assignment_service.record_assignment_attempt(submission_id, result)

        return jsonify(result.to_dict()), 200 if result.success else 400

    except Exception as e:
        logger.error(f"Error ensuring assignments for submission {submission_id}: {str(e)}")
        return jsonify({'error': 'Failed to assign reviewers'}), 500


@bp.route('/manual-assignment', methods=['POST'])
@require_auth
@require_admin
def manual_assignment(current_user):
    """Assign specific reviewers to a submission"""
    try:
        data = request.get_json() or {}

        if 'submission_id' not in data or 'reviewer_ids' not in data:
            return jsonify({'error': 'submission_id and reviewer_ids required'}), 400

        result = pool_service.manual_assign(data['submission_id'], data['reviewer_ids'], current_user['user_id'])
        if not result['success']:
            return jsonify(result), 400

        return jsonify(result), 201

    except Exception as e:
        logger.error(f"Error in manual assignment: {str(e)}")
        return jsonify({'error': 'Failed to create assignments'}), 500


@bp.route('/reviewers/<int:reviewer_id>/eligibility', methods=['GET'])
@require_auth
@require_admin
def reviewer_eligibility(current_user, reviewer_id):
    author_id = request.args.get('author_id', type=int)
    if author_id is None:
        return jsonify({'error': 'author_id is required'}), 400

    can_assign, reason = eligibility_service.can_assign_reviewer(reviewer_id, author_id)
    return jsonify({
        'can_assign': can_assign,
        'reason': reason,
        'workload': pool_service.get_reviewer_workload(reviewer_id)
    }), 200


@bp.route('/submissions/<int:submission_id>/xp', methods=['PUT'])
@require_auth
@require_admin
def modify_submission_xp(current_user, submission_id):
    """Correct a finalized submission's XP"""
    try:
        data = request.get_json() or {}

        if not isinstance(data.get('xp'), int) or isinstance(data.get('xp'), bool):
            return jsonify({'error': 'xp must be an integer'}), 400

        result = propagation_service.modify_submission_xp(
            submission_id,
            data['xp'],
            data.get('reason', ''),
            current_user['user_id'],
            confirmed=bool(data.get('confirmed', False))
        )
        return jsonify(result.to_dict()), 200 if result.success else 400

    except Exception as e:
        logger.error(f"Error modifying XP for submission {submission_id}: {str(e)}")
        return jsonify({'error': 'Failed to modify XP'}), 500


@bp.route('/users/<int:user_id>/recalculate-xp', methods=['POST'])
@require_auth
@require_admin
def recalculate_xp(current_user, user_id):
    result = recalculate_user_totals(user_id)
    return jsonify(result), 200 if result['success'] else 400


@bp.route('/consensus/divergent', methods=['GET'])
@require_auth
@require_admin
def divergent_cases(current_user):
    """Finalized submissions whose reviewers disagree"""
    try:
        days = request.args.get('days', type=int)
        cases = consensus_service.get_divergent_cases(lookback_days=days)
        return jsonify({'cases': cases, 'total': len(cases)}), 200

    except Exception as e:
        logger.error(f"Error fetching divergent cases: {str(e)}")
        return jsonify({'error': 'Failed to fetch divergent cases'}), 500


@bp.route('/consensus/<int:submission_id>/resolve', methods=['POST'])
@require_auth
@require_admin
def resolve_dispute(current_user, submission_id):
    try:
        data = request.get_json() or {}

        if not isinstance(data.get('xp'), int) or isinstance(data.get('xp'), bool):
            return jsonify({'error': 'xp must be an integer'}), 400

        result = consensus_service.resolve_dispute(
            submission_id,
            data['xp'],
            data.get('reason', ''),
            current_user['user_id'],
            confirmed=bool(data.get('confirmed', False))
        )
        return jsonify(result.to_dict()), 200 if result.success else 400

    except Exception as e:
        logger.error(f"Error resolving dispute for submission {submission_id}: {str(e)}")
        return jsonify({'error': 'Failed to resolve dispute'}), 500


@bp.route('/ai-queue/process', methods=['POST'])
@require_auth
@require_admin
def process_ai_queue(current_user):
    return jsonify(evaluation_queue.process_queue()), 200


@bp.route('/ai-queue/stats', methods=['GET'])
@require_auth
@require_admin
def ai_queue_stats(current_user):
    try:
        return jsonify(evaluation_queue.get_evaluation_stats()), 200
    except Exception as e:
        logger.error(f"Error getting evaluation stats: {str(e)}")
        return jsonify({'error': 'Failed to get evaluation stats'}), 500


@bp.route('/ai-queue/retry', methods=['POST'])
@require_auth
@require_admin
def retry_failed_evaluations(current_user):
    try:
        return jsonify({'reset': evaluation_queue.retry_failed_evaluations()}), 200
    except Exception as e:
        logger.error(f"Error retrying failed evaluations: {str(e)}")
        return jsonify({'error': 'Failed to retry evaluations'}), 500


@bp.route('/deadlines', methods=['GET'])
@require_auth
@require_admin
def deadline_statuses(current_user):
    try:
        return jsonify({'assignments': deadline_monitor.get_deadline_statuses()}), 200
    except Exception as e:
        logger.error(f"Error getting deadline statuses: {str(e)}")
        return jsonify({'error': 'Failed to get deadline statuses'}), 500


@bp.route('/deadlines/process', methods=['POST'])
@require_auth
@require_admin
def process_deadlines(current_user):
    try:
        return jsonify(deadline_monitor.process_deadlines()), 200
    except Exception as e:
        logger.error(f"Error processing deadlines: {str(e)}")
        return jsonify({'error': 'Failed to process deadlines'}), 500


@bp.route('/assignments/<int:assignment_id>/extend', methods=['POST'])
@require_auth
@require_admin
def extend_deadline(current_user, assignment_id):
    data = request.get_json() or {}
    result = deadline_monitor.extend_deadline(
        assignment_id,
        data.get('hours'),
        data.get('reason', ''),
        current_user['user_id']
    )
    return jsonify(result), 200 if result['success'] else 400


@bp.route('/weekly-reset', methods=['POST'])
@require_auth
@require_admin
def process_weekly_reset(current_user):
    """Close out the previous week now instead of waiting for the scheduler"""
    try:
        return jsonify(weekly_reset.process_weekly_reset()), 200
    except Exception as e:
        logger.error(f"Error processing weekly reset: {str(e)}")
        return jsonify({'error': 'Failed to process weekly reset'}), 500
