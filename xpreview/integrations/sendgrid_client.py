import sendgrid
from sendgrid.helpers.mail import Mail, Email, To, Content
from typing import Optional, Dict
from config.config import Config
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


class SendGridClient:
    """Wrapper for SendGrid email operations"""

    def __init__(self):
        self.api_key = Config.SENDGRID_API_KEY
        self.from_email = Config.SENDGRID_FROM_EMAIL

        if self.api_key:
            self.client = sendgrid.SendGridAPIClient(api_key=self.api_key)
        else:
            self.client = None
            logger.warning("SendGrid API key not configured")

    def send_email(self, to_email: str, subject: str, html_content: str,
                   plain_content: str = None) -> Optional[Dict]:
        """Send email via SendGrid"""
        if not self.client:
            logger.debug(f"SendGrid disabled, not emailing {to_email}: {subject}")
            return None

        try:
            message = Mail(
                from_email=Email(self.from_email, "Scholars XP"),
                to_emails=To(to_email),
                subject=subject,
                html_content=Content("text/html", html_content)
            )

            if plain_content:
                message.plain_text_content = Content("text/plain", plain_content)

            response = self.client.send(message)

            return {
                'status_code': response.status_code,
                'message_id': response.headers.get('X-Message-Id')
            }
        except Exception as e:
            logger.error(f"Error sending email to {to_email}: {str(e)}")
            return None

    def send_review_assignment_email(self, to_email: str, name: str, submission_url: str,
                                     deadline: str, review_link: str) -> Optional[Dict]:
        """Send peer review assignment email"""
        subject = "New Peer Review Assignment"
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2>New Review Assignment</h2>
                <p>Hi {name},</p>
                <p>You have been assigned a new submission to review:</p>
                <div style="background-color: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">
                    <p><strong>Submission:</strong> <a href="{submission_url}">{submission_url}</a></p>
                    <p><strong>Due:</strong> {deadline}</p>
                </div>
                <p style="margin: 30px 0;">
                    <a href="{review_link}"
                       style="background-color: #4CAF50; color: white; padding: 14px 28px;
                              text-decoration: none; border-radius: 4px; display: inline-block;">
                        Start Review
                    </a>
                </p>
                <p>Missed deadlines count against your reviewer standing.</p>
            </body>
        </html>
        """
        plain_content = (
            f"Hi {name},\n\nYou have been assigned a new submission to review: {submission_url}\n"
            f"Due: {deadline}\n\nStart your review at {review_link}"
        )

        return self.send_email(to_email, subject, html_content, plain_content)

    def send_xp_change_email(self, to_email: str, name: str, xp_difference: int,
                             reason: str) -> Optional[Dict]:
        """Send XP correction notice"""
        direction = 'increased' if xp_difference >= 0 else 'decreased'
        subject = "Your XP was updated"
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h2>XP Updated</h2>
                <p>Hi {name},</p>
                <p>Your XP was {direction} by <strong>{abs(xp_difference)}</strong> points.</p>
                <p><strong>Reason:</strong> {reason}</p>
            </body>
        </html>
        """

        return self.send_email(to_email, subject, html_content)
