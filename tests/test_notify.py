"""Tests for run log reporting."""

import io
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from ikwyd.notify import Notifier


LOG = "2023-01-01 00:00:00 - INFO - Backup completed successfully\n"


def _notifier(mail_to=None):
    return Notifier(mail_to=mail_to, stdout=io.StringIO(), stderr=io.StringIO())


class TestReportDecisions:
    """Where the run log goes for each outcome."""

    @pytest.mark.parametrize("success,verbose,mail_to,to_stdout,to_stderr,mailed", [
        (False, False, None, False, True, False),
        (False, False, "root", False, True, True),
        (False, True, "root", False, True, True),
        (True, False, None, True, False, False),
        (True, True, None, True, False, False),
        (True, False, "root", False, False, False),
        (True, True, "root", True, False, True),
    ])
    def test_matrix(self, success, verbose, mail_to, to_stdout, to_stderr, mailed):
        notifier = _notifier(mail_to)
        with patch.object(Notifier, "send_mail", return_value=True) as send_mail:
            sent = notifier.report(success, LOG, "subject", verbose=verbose)

        assert (notifier._stdout.getvalue() == LOG) is to_stdout
        assert (notifier._stderr.getvalue() == LOG) is to_stderr
        assert send_mail.called is mailed
        assert sent is mailed


class TestSendMail:

    def test_command_line(self):
        notifier = _notifier("root@localhost")
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout="", stderr="")
        with patch("ikwyd.notify.subprocess.run", return_value=completed) as run:
            assert notifier.send_mail("IKWYD log for home::20230101_0000", LOG)

        args, kwargs = run.call_args
        assert args[0] == ["mail", "-s", "IKWYD log for home::20230101_0000", "root@localhost"]
        assert kwargs["input"] == LOG

    def test_failure_is_not_fatal(self):
        notifier = _notifier("root@localhost")
        completed = subprocess.CompletedProcess(args=[], returncode=1, stdout="", stderr="no MTA")
        with patch("ikwyd.notify.subprocess.run", return_value=completed):
            assert notifier.send_mail("s", LOG) is False

    def test_missing_mail_binary(self):
        notifier = Notifier(mail_to="root", mail_binary="/nonexistent/mail")
        assert notifier.send_mail("s", LOG) is False

    def test_timeout(self):
        notifier = _notifier("root")
        with patch("ikwyd.notify.subprocess.run", side_effect=subprocess.TimeoutExpired("mail", 60)):
            assert notifier.send_mail("s", LOG) is False

    def test_no_recipient(self):
        with patch("ikwyd.notify.subprocess.run") as run:
            assert _notifier().send_mail("s", LOG) is False
        run.assert_not_called()
