import os
import boto3
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .secret_manager_service import access_secret_version

# Set up a module-level logger
log = logging.getLogger(__name__)

AWS_REGION = "us-east-1"
SAFE_INBOX = "inbox@propertypilot.app"


def send_email(recipient_email: str, subject: str, template_env, template_name: str,
               context: dict, text_body: str) -> bool:
    """
    Renders `template_name` with `context` and sends it through SES with a plain text fallback.
    Returns True if successful, False otherwise.
    """
    if not recipient_email:
        log.error(f"No recipient for '{subject}'. Skipping email.")
        return False

    sender_email = os.environ.get("SENDER_EMAIL", "noreply@propertypilot.app")

    # Never mail real users from a test deployment
    is_testing = os.environ.get("TESTING_MODE", "true").lower() == "true"
    if is_testing:
        original_email = recipient_email
        recipient_email = os.environ.get("TESTING_INBOX", SAFE_INBOX)
        log.warning(f"TESTING_MODE is active. Redirecting email from {original_email} to {recipient_email}")

    html_body = template_env.get_template(template_name).render(**context)

    aws_access_key_id = access_secret_version("AWS_ACCESS_KEY_ID")
    aws_secret_access_key = access_secret_version("AWS_SECRET_ACCESS_KEY")
    if not aws_access_key_id or not aws_secret_access_key:
        log.error("Failed to retrieve AWS credentials from Secret Manager.")
        return False

    try:
        ses_client = boto3.client(
            'ses',
            region_name=AWS_REGION,
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key
        )

        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = sender_email
        msg['To'] = recipient_email
        msg.attach(MIMEText(text_body, 'plain'))
        msg.attach(MIMEText(html_body, 'html'))

        ses_client.send_raw_email(
            Source=sender_email,
            Destinations=[recipient_email],
            RawMessage={'Data': msg.as_string()}
        )
        log.info(f"Successfully sent '{subject}' to {recipient_email}")
        return True
    except Exception as e:
        log.error(f"An unexpected error occurred while sending email: {e}")
        return False


def send_password_reset_email(email: str, reset_link: str, template_env) -> bool:
    text_body = (
        "Hi,\n\nWe received a request to reset your PropertyPilot password.\n"
        f"Open this link to choose a new one: {reset_link}\n\n"
        "If you didn't ask for this, you can ignore this email.\n\nThe PropertyPilot Team"
    )
    return send_email(email, "Reset your PropertyPilot password", template_env,
                      'password_reset_email.html', {'reset_link': reset_link}, text_body)


def send_verification_email(email: str, verification_link: str, template_env) -> bool:
    text_body = (
        "Welcome to PropertyPilot!\n\n"
        f"Please confirm your email address by opening this link: {verification_link}\n\n"
        "The PropertyPilot Team"
    )
    return send_email(email, "Confirm your PropertyPilot account", template_env,
                      'verify_email.html', {'verification_link': verification_link}, text_body)
