"""
Tests for the register_telegram_webhook management command.
"""

from io import StringIO

import pytest
from django.core.management import CommandError, call_command

from memberships.exceptions import TelegramAPIError
from memberships.tests.factories import ProjectFactory


@pytest.fixture(autouse=True)
def webhook_base_url(settings):
    settings.TELEGRAM_WEBHOOK_BASE_URL = "https://bot.example.com"


@pytest.mark.django_db
class TestRegisterTelegramWebhook:
    def test_registers_active_projects(self, project, telegram):
        ProjectFactory(is_active=False)
        out = StringIO()

        call_command("register_telegram_webhook", stdout=out)

        telegram.set_webhook.assert_called_once()
        assert f"project_id={project.id}" in out.getvalue()

    def test_single_project(self, project, telegram):
        ProjectFactory()

        call_command("register_telegram_webhook", project=str(project.id), stdout=StringIO())

        assert telegram.set_webhook.call_count == 1

    def test_no_match(self, db, telegram):
        with pytest.raises(CommandError, match="No active project"):
            call_command("register_telegram_webhook", stdout=StringIO())

    def test_failure_exits_non_zero(self, project, telegram):
        telegram.set_webhook.side_effect = TelegramAPIError("Telegram setWebhook failed: Unauthorized")

        with pytest.raises(CommandError, match="1 project"):
            call_command("register_telegram_webhook", stdout=StringIO(), stderr=StringIO())

    def test_info(self, project, telegram):
        telegram.get_webhook_info.return_value = {"url": "https://bot.example.com/x", "pending_update_count": 2}
        out = StringIO()

        call_command("register_telegram_webhook", info=True, stdout=out)

        assert "pending=2" in out.getvalue()
        telegram.set_webhook.assert_not_called()
