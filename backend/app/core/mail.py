import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any, Dict, Optional

import resend
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from jinja2 import Environment, FileSystemLoader, select_autoescape
from supabase import Client
from tenacity import retry, stop_after_attempt, wait_exponential

from app.core.config import ResendConfig, SMTPConfig, get_invitation_token_secret
from app.lib.api_client import supabase_admin
from app.models.email_log import EmailStatus

logger = logging.getLogger("journaldesk.email")

INVITATION_TOKEN_SALT = "review-invitation"


class EmailService:
    _SENTINEL = object()

    def __init__(
        self,
        *,
        smtp_config: SMTPConfig | None | object = _SENTINEL,
        resend_config: ResendConfig | None | object = _SENTINEL,
        supabase_client: Client | None | object = _SENTINEL,
        token_secret: str | None = None,
    ):
        # 中文注释:
        # - smtp_config / resend_config 支持依赖注入，方便单测与不同环境切换。
        # - 若调用方显式传 None，则视为禁用该 provider。
        if smtp_config is self._SENTINEL:
            smtp_config = SMTPConfig.from_env()
        if resend_config is self._SENTINEL:
            resend_config = ResendConfig.from_env()

        self.smtp_config: SMTPConfig | None = smtp_config  # type: ignore[assignment]
        self.resend_config: ResendConfig | None = resend_config  # type: ignore[assignment]

        if self.resend_config:
            resend.api_key = self.resend_config.api_key

        templates_dir = Path(__file__).resolve().parent / "templates"
        self._jinja = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )

        self._serializer = URLSafeTimedSerializer(token_secret or get_invitation_token_secret())

        # email_logs 写入使用 service_role；单测可显式传 None 关闭
        if supabase_client is self._SENTINEL:
            supabase_client = supabase_admin
        self._supabase = supabase_client

    def is_configured(self) -> bool:
        return bool(self.smtp_config or self.resend_config)

    def create_token(self, payload: Any, salt: str = INVITATION_TOKEN_SALT) -> str:
        """Generate a signed, time-bound token."""
        return self._serializer.dumps(payload, salt=salt)

    def verify_token(self, token: str, salt: str = INVITATION_TOKEN_SALT, max_age: int = 1209600) -> Optional[Any]:
        """
        Verify token and return its payload if valid.
        Default max_age: 14 days, matching the invitation withdrawal window.
        """
        try:
            return self._serializer.loads(token, salt=salt, max_age=max_age)
        except (SignatureExpired, BadSignature):
            return None

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        return self._jinja.get_template(template_name).render(**context)

    def send_email(
        self,
        *,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> bool:
        """
        发送邮件（同步）。

        中文注释:
        - 优先 SMTP；SMTP 未配置但 Resend 已配置时走 Resend（带重试）。
        - 任何发送异常都只记录日志并返回 False，由调用方决定是否降级。
        """
        if self.smtp_config:
            try:
                msg = MIMEMultipart("alternative")
                msg["Subject"] = subject
                msg["From"] = self.smtp_config.from_email
                msg["To"] = to_email

                if text_body:
                    msg.attach(MIMEText(text_body, "plain", "utf-8"))
                msg.attach(MIMEText(html_body, "html", "utf-8"))

                with smtplib.SMTP(self.smtp_config.host, self.smtp_config.port) as server:
                    if self.smtp_config.use_starttls:
                        server.starttls()
                    if self.smtp_config.user and self.smtp_config.password:
                        server.login(self.smtp_config.user, self.smtp_config.password)
                    server.sendmail(self.smtp_config.from_email, [to_email], msg.as_string())
                return True
            except Exception as e:
                logger.warning("SMTP send to %s failed: %s", to_email, e)
                return False

        if self.resend_config:
            try:
                self._send_with_retry(to_email, subject, html_body)
                return True
            except Exception as e:
                logger.warning("Resend send to %s failed: %s", to_email, e)
                return False

        return False

    def send_template_email(
        self,
        *,
        to_email: str,
        subject: str,
        template_name: str,
        context: Dict[str, Any],
    ) -> bool:
        """
        渲染模板并发送，结果写入 email_logs。

        未配置任何 provider 时返回 False 并记为 skipped（本地开发/CI 场景）。
        """
        if not to_email:
            return False
        if not self.is_configured():
            logger.info("Email provider not configured, skipped '%s' to %s", subject, to_email)
            self._log_attempt(to_email, subject, template_name, EmailStatus.SKIPPED)
            return False
        try:
            html = self.render_template(template_name, {"subject": subject, **context})
        except Exception as e:
            logger.warning("Template %s render failed: %s", template_name, e)
            self._log_attempt(to_email, subject, template_name, EmailStatus.FAILED, error_message=str(e))
            return False

        ok = self.send_email(to_email=to_email, subject=subject, html_body=html)
        if ok:
            self._log_attempt(to_email, subject, template_name, EmailStatus.SENT)
        else:
            self._log_attempt(to_email, subject, template_name, EmailStatus.FAILED, error_message="send failed")
        return ok

    def send_email_background(self, to_email: str, subject: str, template_name: str, context: Dict[str, Any]):
        """
        Entry point for BackgroundTasks. Runs synchronously in a threadpool.
        """
        self.send_template_email(
            to_email=to_email,
            subject=subject,
            template_name=template_name,
            context=context,
        )

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10), reraise=True)
    def _send_with_retry(self, to_email: str, subject: str, html_content: str):
        params = {
            "from": self.resend_config.sender if self.resend_config else "JournalDesk <no-reply@journaldesk.local>",
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }
        return resend.Emails.send(params)

    def _log_attempt(
        self,
        recipient: str,
        subject: str,
        template_name: str,
        status: EmailStatus,
        error_message: Optional[str] = None,
    ) -> None:
        if self._supabase is None:
            return
        try:
            self._supabase.table("email_logs").insert(
                {
                    "recipient": recipient,
                    "subject": subject,
                    "template_name": template_name,
                    "status": status.value,
                    "error_message": error_message,
                }
            ).execute()
        except Exception as e:
            logger.warning("Failed to log email attempt: %s", e)


def enqueue_template_email(email: EmailService, background_tasks: Any = None, **kwargs: Any) -> None:
    """
    请求链路发信入口。

    中文注释:
    - 传入 BackgroundTasks 时排队，响应返回后在线程池执行 send_email_background，不阻塞事件循环。
    - 无 BackgroundTasks（脚本、Cron 等）时同步发送。
    """
    if background_tasks is not None:
        background_tasks.add_task(email.send_email_background, **kwargs)
        return
    email.send_template_email(**kwargs)


# Global instance
email_service = EmailService()
