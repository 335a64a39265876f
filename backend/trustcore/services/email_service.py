"""邮件发送服务（OTP 邮件的外部协作方）"""

import asyncio
import logging
import smtplib
import time
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol

from trustcore.core.config import get_settings
from trustcore.core.logging_config import mask_email

logger = logging.getLogger(__name__)
settings = get_settings()


class OtpEmailSender(Protocol):
    """OTP 邮件发送协议：尽力而为，失败不回滚 OTP 记录"""

    async def send_otp_email(self, email: str, code: str, expiry_minutes: int) -> bool:
        ...


class EmailService:
    """邮件发送服务"""

    def __init__(
        self,
        max_retries: int = 3,
        retry_delay: int = 2,
    ):
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password
        self.from_email = settings.smtp_from_email or settings.smtp_username
        self.from_name = settings.smtp_from_name
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        发送邮件

        Args:
            to_email: 收件人邮箱
            subject: 邮件主题
            html_content: HTML 内容
            text_content: 纯文本内容（可选）

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.smtp_username or not self.smtp_password:
            logger.warning("SMTP credentials not configured, email not sent")
            return False

        # 在线程池中运行同步代码，避免阻塞事件循环
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self._send_email_sync,
            to_email,
            subject,
            html_content,
            text_content
        )

    def _open_connection(self) -> smtplib.SMTP:
        # 587 端口使用 STARTTLS，465 端口使用 SSL
        if self.smtp_port == 465:
            return smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=30)
        server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30)
        if self.smtp_port == 587:
            server.ehlo()
            server.starttls()
            server.ehlo()
        return server

    def _send_email_sync(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """同步发送邮件（在线程池中运行），带指数退避重试"""
        message = MIMEMultipart('alternative')
        message['From'] = f"{self.from_name} <{self.from_email}>"
        message['To'] = to_email
        message['Subject'] = subject
        if text_content:
            message.attach(MIMEText(text_content, 'plain', 'utf-8'))
        message.attach(MIMEText(html_content, 'html', 'utf-8'))

        for attempt in range(self.max_retries):
            server = None
            try:
                server = self._open_connection()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(message)
                logger.info(f"Email sent successfully to {mask_email(to_email)}")
                return True
            except (smtplib.SMTPException, OSError) as e:
                logger.warning(f"SMTP error (attempt {attempt + 1}/{self.max_retries}): {e}")
                if attempt < self.max_retries - 1:
                    wait_time = self.retry_delay * (2 ** attempt)  # 2, 4, 8 秒
                    time.sleep(wait_time)
            finally:
                if server:
                    try:
                        server.quit()
                    except (smtplib.SMTPException, OSError):
                        pass  # 忽略关闭连接时的错误

        logger.error(f"Email sending to {mask_email(to_email)} failed after {self.max_retries} attempts")
        return False

    async def send_otp_email(self, email: str, code: str, expiry_minutes: int) -> bool:
        """
        发送 OTP 验证码邮件

        Args:
            email: 收件人邮箱（已规范化）
            code: 明文验证码，只出现在邮件正文里
            expiry_minutes: 有效期（分钟）
        """
        subject = f"Your sign-in code - {settings.app_name}"

        html_content = f"""
<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>Sign-in code</title></head>
<body style="margin: 0; padding: 40px 20px; font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; background-color: #f5f5f7;">
    <table width="600" cellpadding="0" cellspacing="0" align="center" style="background-color: #ffffff; border-radius: 16px;">
        <tr>
            <td style="padding: 40px;">
                <h2 style="margin: 0 0 16px; color: #1f2937;">Your sign-in code</h2>
                <div style="background-color: #f9fafb; border: 2px dashed #e5e7eb; border-radius: 12px; padding: 24px; text-align: center;">
                    <div style="font-size: 48px; font-weight: bold; letter-spacing: 8px; font-family: 'Courier New', monospace;">{code}</div>
                </div>
                <p style="color: #6b7280; font-size: 14px;">
                    This code expires in <strong>{expiry_minutes} minutes</strong> and can be used once.
                    Never share it with anyone. If you did not request it, ignore this email.
                </p>
            </td>
        </tr>
    </table>
</body>
</html>
        """

        text_content = f"""
Your sign-in code is: {code}

This code expires in {expiry_minutes} minutes and can be used once.
Never share it with anyone. If you did not request it, ignore this email.
        """

        return await self.send_email(
            to_email=email,
            subject=subject,
            html_content=html_content,
            text_content=text_content
        )


# 全局实例
email_service = EmailService()
