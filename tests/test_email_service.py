"""Tests for email_templates.py and email_service.py."""

from __future__ import annotations

from unittest.mock import patch


class TestTemplates:
    def test_catalogue_split(self):
        from email_templates import EMAIL_TEMPLATES, marketing_templates, transactional_templates
        marketing = {t.key for t in marketing_templates()}
        transactional = {t.key for t in transactional_templates()}
        assert marketing | transactional == set(EMAIL_TEMPLATES)
        assert not marketing & transactional
        assert "WELCOME" in transactional
        assert "PAYMENT_FAILED_FINAL" in transactional
        assert "ABANDONMENT_1" in marketing
        assert "INACTIVE_NUDGE" in marketing

    def test_get_template_unknown(self):
        from email_templates import get_template
        assert get_template("NOPE") is None
        assert get_template("WELCOME").key == "WELCOME"

    def test_render_substitutes(self):
        from email_templates import render_template
        assert render_template("Hi {{name}}!", {"name": "Ada"}) == "Hi Ada!"

    def test_render_keeps_unknown_variable(self):
        from email_templates import render_template
        assert render_template("Code: {{mystery_code}}", {}) == "Code: {{mystery_code}}"

    def test_render_escapes_html(self):
        from email_templates import render_template
        out = render_template("<p>{{name}}</p>", {"name": "<script>x</script>"}, escape_html=True)
        assert out == "<p>&lt;script&gt;x&lt;/script&gt;</p>"

    def test_plain_text_not_escaped(self):
        from email_templates import render_template
        assert render_template("{{name}}", {"name": "A & B"}) == "A & B"

    def test_unsubscribe_url_from_email(self, app):
        with app.app_context():
            from email_templates import render_template
            out = render_template("{{unsubscribe_url}}", {"email": "a+b@example.com"})
            assert out == "https://course.test/unsubscribe?email=a%2Bb%40example.com"

    def test_defaults_use_app_config(self, app):
        with app.app_context():
            from email_templates import default_variables
            defaults = default_variables()
            assert defaults["pricing_url"] == "https://course.test/pricing"
            assert defaults["course_name"] == app.config["COURSE_NAME"]
            assert "discord_url" not in defaults

    def test_render_email_has_all_parts(self, app):
        with app.app_context():
            from email_templates import get_template, render_email
            rendered = render_email(get_template("WELCOME"), {"name": "Ada", "email": "ada@example.com"})
            assert "Ada" in rendered["subject"]
            assert "Hi Ada" in rendered["text"]
            assert rendered["html"].startswith("<!DOCTYPE html>")

    def test_validate_variables(self, app):
        with app.app_context():
            from email_templates import validate_variables
            assert validate_variables("{{name}} {{pricing_url}}", {}) == {"valid": True, "missing": []}
            result = validate_variables("{{module_title}} {{module_title}} {{amount}}", {})
            assert result == {"valid": False, "missing": ["module_title", "amount"]}


class TestEmailService:
    def test_send_logs_sent(self, app):
        with app.app_context():
            from email_service import EmailService, email_log_for_user
            result = EmailService.send(1, "WELCOME")
            assert result.success is True
            assert result.skipped is False
            assert result.message_id.startswith("log-")
            log = email_log_for_user(1)
            assert [e["status"] for e in log] == ["SENT"]
            assert log[0]["metadata"]["recipient"] == "test@example.com"

    def test_unknown_template(self, app):
        with app.app_context():
            from email_service import EmailService
            result = EmailService.send(1, "NOT_A_TEMPLATE")
            assert result.success is False
            assert "Unknown email template" in result.error

    def test_unknown_user(self, app):
        with app.app_context():
            from email_service import EmailService
            result = EmailService.send(9999, "WELCOME")
            assert result.success is False

    def test_marketing_opt_out_is_skipped(self, app, db):
        from email_service import OPT_OUT_REASON, EmailService, email_log_for_user
        db.execute("UPDATE users SET marketing_opt_out = 1 WHERE id = 1")
        db.commit()
        with patch("email_service.EmailService._deliver") as deliver:
            result = EmailService.send(1, "ABANDONMENT_1")
        deliver.assert_not_called()
        assert result.success is True
        assert result.skipped is True
        assert result.reason == OPT_OUT_REASON
        assert email_log_for_user(1)[0]["status"] == "CANCELLED"

    def test_transactional_ignores_opt_out(self, app, db):
        from email_service import EmailService
        db.execute("UPDATE users SET marketing_opt_out = 1 WHERE id = 1")
        db.commit()
        result = EmailService.send(1, "PAYMENT_FAILED")
        assert result.success is True
        assert result.skipped is False

    def test_delivery_failure_logged(self, app):
        with app.app_context():
            from email_service import EmailService, email_log_for_user
            with patch("email_service.EmailService._deliver",
                       side_effect=OSError("connection refused")):
                result = EmailService.send(1, "WELCOME")
            assert result.success is False
            assert "connection refused" in result.error
            log = email_log_for_user(1)
            assert log[0]["status"] == "FAILED"

    def test_unexpected_delivery_error_logged(self, app):
        with app.app_context():
            from email_service import EmailService, email_log_for_user
            with patch("email_service.EmailService._deliver",
                       side_effect=ValueError("bad header")):
                result = EmailService.send(1, "WELCOME")
            assert result.success is False
            assert result.error == "bad header"
            log = email_log_for_user(1)
            assert log[0]["status"] == "FAILED"
            assert log[0]["metadata"] == {"error": "bad header"}

    def test_render_error_logged(self, app):
        with app.app_context():
            from email_service import EmailService, email_log_for_user
            with patch("email_service.render_email", side_effect=KeyError("subject")):
                result = EmailService.send(1, "WELCOME")
            assert result.success is False
            assert email_log_for_user(1)[0]["status"] == "FAILED"

    def test_override_recipient(self, app):
        with app.app_context():
            from email_service import EmailService, email_log_for_user
            EmailService.send(1, "WELCOME", to_email="other@example.com")
            assert email_log_for_user(1)[0]["metadata"]["recipient"] == "other@example.com"

    def test_smtp_backend_uses_mail_settings(self, app):
        app.config["EMAIL_BACKEND"] = "smtp"
        app.config["MAIL_SERVER"] = "smtp.example.com"
        with app.app_context():
            from email_service import EmailService
            with patch("email_service.EmailService._do_send", return_value="<id@x>") as do_send:
                result = EmailService.send(1, "WELCOME")
            assert result.message_id == "<id@x>"
            to, rendered, config = do_send.call_args[0]
            assert to == "test@example.com"
            assert config["mail_server"] == "smtp.example.com"

    def test_was_email_sent(self, app):
        with app.app_context():
            from email_service import EmailService, was_email_sent
            assert was_email_sent(1, "WELCOME") is False
            EmailService.send(1, "WELCOME")
            assert was_email_sent(1, "WELCOME") is True
            assert was_email_sent(1, "COURSE_COMPLETE") is False
