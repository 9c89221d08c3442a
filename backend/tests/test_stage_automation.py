"""
Unique CRM - Stage change automation
Run: cd backend && pytest tests/test_stage_automation.py -v
"""

import pytest

from models.payloads import StageChangePayload
from services import stage_automation
from services.stage_automation import handle_stage_change
from services.store import StoreError, fetch_all

PIPELINE = "pipe-feegow"
LEAD = "lead-ana"
TEAM = "team-lioness"
SELLER = "seller-1"

STAGES = {
    "st-new": "Novo Lead",
    "st-qualify": "Qualificação",
    "st-scheduled": "Consulta Agendada",
    "st-proposal": "Proposta Enviada",
    "st-closing": "Fechamento",
    "st-won": "Venda Ganha",
    "st-upsell": "Oportunidade Upsell",
    "st-consulted": "Consulta Realizada",
    "st-surgery": "Cirurgia Realizada",
}


async def _seed(store, **lead_fields):
    await store.insert("crm_pipelines", [{"id": PIPELINE, "name": "Feegow", "pipeline_type": "FEEGOW"}])
    await store.insert("crm_stages", [
        {"id": sid, "name": name, "pipeline_id": PIPELINE, "order_index": i}
        for i, (sid, name) in enumerate(STAGES.items())
    ])
    lead = {
        "id": LEAD,
        "name": "Ana Souza",
        "assigned_to": SELLER,
        "team_id": TEAM,
        "pipeline_id": PIPELINE,
        "stage_id": "st-new",
        "tags": ["vip"],
        "contract_value": 15000,
        "source": "FEEGOW",
    }
    lead.update(lead_fields)
    await store.insert("crm_leads", [lead])


def _payload(new_stage, old_stage=None, performed_by=None):
    return StageChangePayload(
        lead_id=LEAD, old_stage_id=old_stage, new_stage_id=new_stage, performed_by=performed_by
    )


class TestWonStage:
    @pytest.mark.asyncio
    async def test_venda_ganha(self, store, capabilities):
        await _seed(store)
        result = await handle_stage_change(store, capabilities, _payload("st-won", "st-closing"))

        assert result.success is True
        assert result.old_stage_name == "Fechamento"
        assert result.new_stage_name == "Venda Ganha"
        assert "resultado:ganho" in result.tags_added
        assert "Pontos de gamificação atribuídos" in result.actions

        lead = await store.find_one("crm_leads", {"id": LEAD})
        assert lead["won_at"]
        assert lead["status"] == "won"
        assert "resultado:ganho" in lead["tags"]

        assert capabilities.calls == [
            ("award_gamification_points", SELLER, "sale_closed", LEAD, 15000.0)
        ]
        won = await fetch_all(store, "notifications", {"type": "sale_won"})
        assert len(won) == 1
        assert won[0]["user_id"] == SELLER
        assert "Ana Souza" in won[0]["message"]
        assert result.notifications_sent == 1

    @pytest.mark.asyncio
    async def test_won_at_is_never_overwritten(self, store, capabilities):
        await _seed(store, won_at="2025-01-01T00:00:00+00:00", status="won")
        await handle_stage_change(store, capabilities, _payload("st-won"))
        lead = await store.find_one("crm_leads", {"id": LEAD})
        assert lead["won_at"] == "2025-01-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_json_result(self, store, capabilities):
        await _seed(store)
        body = (await handle_stage_change(store, capabilities, _payload("st-won"))).to_json()
        assert body["success"] is True
        assert body["newStageName"] == "Venda Ganha"
        assert body["notificationsSent"] == 1
        assert "notFound" not in body

    @pytest.mark.asyncio
    async def test_brazilian_formatted_contract_value(self, store, capabilities):
        await _seed(store, contract_value="R$ 1.500,00")
        result = await handle_stage_change(store, capabilities, _payload("st-won"))
        assert result.success is True
        assert capabilities.calls[0][-1] == 1500.0

    @pytest.mark.asyncio
    async def test_unreadable_contract_value_falls_back(self, store, capabilities):
        await _seed(store, contract_value="a combinar", estimated_value=800)
        result = await handle_stage_change(store, capabilities, _payload("st-won"))
        assert result.success is True
        assert capabilities.calls[0][-1] == 800.0

    @pytest.mark.asyncio
    async def test_unreadable_values_award_zero_and_still_close(self, store, capabilities):
        await _seed(store, contract_value="a combinar")
        result = await handle_stage_change(store, capabilities, _payload("st-won"))

        assert result.success is True
        assert capabilities.calls == [
            ("award_gamification_points", SELLER, "sale_closed", LEAD, 0.0)
        ]
        lead = await store.find_one("crm_leads", {"id": LEAD})
        assert lead["won_at"]
        assert lead["status"] == "won"

class TestTagsAndPatch:
    @pytest.mark.asyncio
    async def test_tag_union_is_idempotent(self, store, capabilities):
        await _seed(store)
        await handle_stage_change(store, capabilities, _payload("st-closing"))
        once = (await store.find_one("crm_leads", {"id": LEAD}))["tags"]
        await handle_stage_change(store, capabilities, _payload("st-closing"))
        twice = (await store.find_one("crm_leads", {"id": LEAD}))["tags"]

        assert once == twice == ["vip", "etapa:fechamento", "prioridade:alta"]

    @pytest.mark.asyncio
    async def test_closing_heats_the_lead(self, store, capabilities):
        await _seed(store)
        result = await handle_stage_change(store, capabilities, _payload("st-closing"))
        lead = await store.find_one("crm_leads", {"id": LEAD})
        assert lead["temperature"] == "hot"
        assert "Temperatura atualizada para HOT" in result.actions

    @pytest.mark.asyncio
    async def test_history_entry_is_written(self, store, capabilities):
        await _seed(store)
        await handle_stage_change(store, capabilities, _payload("st-new", performed_by="user-9"))
        history = await fetch_all(store, "crm_lead_history", {"lead_id": LEAD})
        assert len(history) == 1
        assert history[0]["action"] == "stage_automation"
        assert history[0]["performed_by"] == "user-9"
        assert history[0]["details"]["new_stage"] == "Novo Lead"
        assert history[0]["details"]["tasks_created"] == 1


class TestTasksAndNotifications:
    @pytest.mark.asyncio
    async def test_confirmation_task_due_at_next_contact(self, store, capabilities):
        await _seed(store, next_contact_date="2025-07-10T14:00:00+00:00")
        result = await handle_stage_change(store, capabilities, _payload("st-scheduled"))
        tasks = await fetch_all(store, "crm_tasks", {"lead_id": LEAD})
        assert result.tasks_created == 1
        assert tasks[0]["due_date"] == "2025-07-10T14:00:00+00:00"
        assert tasks[0]["assigned_to"] == SELLER

    @pytest.mark.asyncio
    async def test_proposal_notifies_performer_first(self, store, capabilities):
        await _seed(store)
        await handle_stage_change(store, capabilities, _payload("st-proposal", performed_by="coord-1"))
        rows = await fetch_all(store, "notifications", {"type": "lead_proposal"})
        assert [r["user_id"] for r in rows] == ["coord-1"]

    @pytest.mark.asyncio
    async def test_notification_without_recipient_is_skipped(self, store, capabilities):
        await _seed(store, assigned_to=None)
        result = await handle_stage_change(store, capabilities, _payload("st-proposal"))
        assert result.success is True
        assert result.notifications_sent == 0
        assert result.tasks_created == 1
        assert await store.count("notifications") == 0


class TestCapabilities:
    @pytest.mark.asyncio
    async def test_failure_does_not_abort_the_rule(self, store, capabilities):
        await _seed(store)
        capabilities.failing.add("qualify")
        result = await handle_stage_change(store, capabilities, _payload("st-qualify"))

        assert result.success is True
        assert capabilities.names() == ["qualify"]
        assert "IA de qualificação acionada" not in result.actions
        lead = await store.find_one("crm_leads", {"id": LEAD})
        assert "etapa:qualificacao" in lead["tags"]

    @pytest.mark.asyncio
    async def test_upsell_requests_recommendations(self, store, capabilities):
        await _seed(store)
        result = await handle_stage_change(store, capabilities, _payload("st-upsell"))
        assert capabilities.names() == ["recommend_procedures"]
        assert "Recomendações de procedimentos geradas" in result.actions

    @pytest.mark.asyncio
    async def test_unexpected_client_error_is_contained(self, store, capabilities, monkeypatch):
        await _seed(store)

        async def broken(*args):
            raise TypeError("unexpected response shape")

        monkeypatch.setattr(capabilities, "award_gamification_points", broken)
        result = await handle_stage_change(store, capabilities, _payload("st-won"))

        assert result.success is True
        assert "Pontos de gamificação atribuídos" not in result.actions
        assert result.notifications_sent == 1

class TestReferralScoring:
    @pytest.mark.asyncio
    async def test_surgery_award_is_recorded_once(self, store, capabilities):
        await _seed(store, source="indicacao")
        first = await handle_stage_change(store, capabilities, _payload("st-surgery"))
        second = await handle_stage_change(store, capabilities, _payload("st-surgery"))

        cards = await fetch_all(store, "cards", {"reason": "Indicação operou: Ana Souza"})
        assert len(cards) == 1
        assert cards[0]["points"] == 30
        assert cards[0]["team_id"] == TEAM
        assert any("+30" in a for a in first.actions)
        assert not any("+30" in a for a in second.actions)
        assert second.success is True

    @pytest.mark.asyncio
    async def test_consultation_award(self, store, capabilities):
        await _seed(store, source="referral")
        await handle_stage_change(store, capabilities, _payload("st-consulted"))
        cards = await fetch_all(store, "cards")
        assert [(c["points"], c["reason"]) for c in cards] == [(15, "Indicação consultou: Ana Souza")]

    @pytest.mark.asyncio
    async def test_non_referral_lead_scores_nothing(self, store, capabilities):
        await _seed(store)
        await handle_stage_change(store, capabilities, _payload("st-surgery"))
        assert await store.count("cards") == 0

    @pytest.mark.asyncio
    async def test_lead_without_team_scores_nothing(self, store, capabilities):
        await _seed(store, source="indicacao", team_id=None)
        await handle_stage_change(store, capabilities, _payload("st-surgery"))
        assert await store.count("cards") == 0

    @pytest.mark.asyncio
    async def test_nameless_referral_lead_scores_nothing(self, store, capabilities):
        await _seed(store, source="indicacao", name=None)
        result = await handle_stage_change(store, capabilities, _payload("st-surgery"))
        assert result.success is True
        assert await store.count("cards") == 0


class TestWriteFailures:
    @pytest.mark.asyncio
    async def test_history_failure_keeps_completed_work(self, store, capabilities, monkeypatch):
        await _seed(store)

        async def broken_history(*args, **kwargs):
            raise StoreError("insert crm_lead_history failed: timeout")

        monkeypatch.setattr(stage_automation, "log_lead_history", broken_history)
        result = await handle_stage_change(store, capabilities, _payload("st-won"))

        assert result.success is True
        assert result.errors == 1
        assert "Pontos de gamificação atribuídos" in result.actions
        assert result.notifications_sent == 1
        lead = await store.find_one("crm_leads", {"id": LEAD})
        assert lead["won_at"]

    @pytest.mark.asyncio
    async def test_task_failure_is_counted_and_not_reported_as_created(
        self, store, capabilities, monkeypatch
    ):
        await _seed(store)
        real_insert = store.insert

        async def insert(table, rows):
            if table == "crm_tasks":
                raise StoreError("insert crm_tasks failed: timeout")
            return await real_insert(table, rows)

        monkeypatch.setattr(store, "insert", insert)
        result = await handle_stage_change(store, capabilities, _payload("st-proposal", performed_by="coord-1"))

        assert result.success is True
        assert result.errors == 1
        assert result.tasks_created == 0
        assert "Follow-up de proposta agendado" not in result.actions
        assert result.notifications_sent == 1
        lead = await store.find_one("crm_leads", {"id": LEAD})
        assert "etapa:proposta" in lead["tags"]
        history = await fetch_all(store, "crm_lead_history", {"lead_id": LEAD})
        assert history[0]["details"]["tasks_created"] == 0

    @pytest.mark.asyncio
    async def test_patch_failure_drops_patch_actions(self, store, capabilities, monkeypatch):
        await _seed(store)

        async def broken_update(table, filter, patch):
            raise StoreError("update crm_leads failed: timeout")

        monkeypatch.setattr(store, "update", broken_update)
        result = await handle_stage_change(store, capabilities, _payload("st-closing"))

        assert result.success is True
        assert result.errors == 1
        assert result.tags_added == []
        assert "Temperatura atualizada para HOT" not in result.actions
        assert result.notifications_sent == 1

    @pytest.mark.asyncio
    async def test_unexpected_crash_is_reported(self, store, capabilities, monkeypatch):
        await _seed(store)

        def broken_task(template, lead, now):
            raise KeyError("due_in")

        monkeypatch.setattr(stage_automation, "build_task", broken_task)
        result = await handle_stage_change(store, capabilities, _payload("st-new"))
        assert result.success is False
        assert result.not_found is False
        assert "due_in" in result.error

class TestInputResolution:
    @pytest.mark.asyncio
    async def test_unknown_lead(self, store, capabilities):
        await _seed(store)
        payload = StageChangePayload(lead_id="nope", new_stage_id="st-won")
        result = await handle_stage_change(store, capabilities, payload)
        assert result.success is False
        assert result.not_found is True
        assert await store.count("crm_lead_history") == 0
        assert capabilities.calls == []

    @pytest.mark.asyncio
    async def test_unknown_stage(self, store, capabilities):
        await _seed(store)
        result = await handle_stage_change(store, capabilities, _payload("st-missing"))
        assert result.success is False
        assert result.not_found is True
