"""Reporting for ikwyd.

Surfaces the run log at the end of a run: on the terminal and, when a
recipient is configured, by mail through the system ``mail`` command.
"""

import logging
import subprocess
import sys
from typing import Optional, TextIO


logger = logging.getLogger(__name__)


class Notifier:
    """
    Sends the run log by mail and prints it to the terminal.

    What is surfaced depends on the outcome:
    - failure: the log goes to stderr, and is mailed if a recipient is set
    - success: the log goes to stdout if verbose or no recipient is set,
      and is mailed if verbose and a recipient is set
    """

    def __init__(
        self,
        mail_to: Optional[str] = None,
        mail_binary: str = "mail",
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
    ):
        self.mail_to = mail_to
        self.mail_binary = mail_binary
        self._stdout = stdout
        self._stderr = stderr

    def report(
        self,
        success: bool,
        log_text: str,
        subject: str,
        verbose: bool = False,
    ) -> bool:
        """
        Surface the run log.

        Args:
            success: Whether the run succeeded
            log_text: Full run log
            subject: Mail subject
            verbose: Whether -v was given

        Returns:
            True if a mail was sent
        """
        if not success:
            self._print(log_text, self._stderr or sys.stderr)
        elif verbose or not self.mail_to:
            self._print(log_text, self._stdout or sys.stdout)

        if self.mail_to and (not success or verbose):
            return self.send_mail(subject, log_text)
        return False

    def send_mail(self, subject: str, body: str) -> bool:
        """
        Send ``body`` to the configured recipient.

        Runs ``mail -s <subject> <recipient>`` with the body on stdin.

        Returns:
            True if the mail command succeeded
        """
        if not self.mail_to:
            return False

        try:
            result = subprocess.run(
                [self.mail_binary, "-s", subject, self.mail_to],
                input=body,
                capture_output=True,
                text=True,
                timeout=60,
            )
            if result.returncode != 0:
                logger.warning(f"Mail to {self.mail_to} failed: {result.stderr.strip()}")
                return False
            return True
        except subprocess.TimeoutExpired:
            logger.warning("Mail command timed out")
            return False
        except FileNotFoundError:
            logger.warning(f"{self.mail_binary} not found - mail notifications not available")
            return False
        except OSError as e:
            logger.warning(f"Mail error: {e}")
            return False

    @staticmethod
    def _print(text: str, stream: TextIO) -> None:
        if text:
            stream.write(text)
            stream.flush()
