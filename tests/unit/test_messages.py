"""Unit tests for the spoken alert text."""

from alertcall.escalation.messages import build_spoken_message, create_preview

from tests.conftest import make_alert


class TestSpokenMessage:
    """Test the text read to contacts."""

    def test_message_layout(self):
        """Sender, subject and preview are read, then the instruction."""
        alert = make_alert(
            sender='"Monitoring" <alerts@monitor.example.com>',
            subject="Disk full on db-1",
            body_preview="Volume /var is at 99%.",
        )

        message = build_spoken_message(alert)

        assert message == (
            "Critical alert. From: Monitoring. Subject: Disk full on db-1. "
            "Message: Volume /var is at 99%.. "
            "Press 1 to confirm you have received this alert."
        )

    def test_whitespace_is_collapsed(self):
        """Line breaks in the body are not read out as pauses."""
        alert = make_alert(body_preview="line one\n\n   line two\tend")

        message = build_spoken_message(alert)

        assert "line one line two end" in message
        assert "\n" not in message

    def test_markup_is_removed(self):
        """Tags in the subject are not spoken."""
        alert = make_alert(subject="<b>CPU</b> at 100%")

        assert "Subject: CPU at 100%." in build_spoken_message(alert)

    def test_missing_fields(self):
        """Empty fields are replaced with a placeholder."""
        alert = make_alert(sender="", subject="", body_preview=None)

        message = build_spoken_message(alert)

        assert "From: unknown sender." in message
        assert "Subject: no subject." in message
        assert "Message: no details." in message

    def test_custom_confirm_digit(self):
        """The instruction names the configured key."""
        message = build_spoken_message(make_alert(), confirm_digit="5")

        assert message.endswith("Press 5 to confirm you have received this alert.")


class TestPreview:
    """Test body previews."""

    def test_long_text_is_truncated(self):
        """Previews are capped with an ellipsis."""
        preview = create_preview("word " * 400, max_length=50)

        assert len(preview) == 53
        assert preview.endswith("...")

    def test_short_text_is_kept(self):
        """Short text is only normalized."""
        assert create_preview("  short  text ") == "short text"
