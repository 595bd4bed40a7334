"""HTTP-level tests for the bookkeeping API."""

from decimal import Decimal
from uuid import uuid4

API = "/api/v1"


def _sale(amount: str, **kwargs) -> dict:
    return {
        "lines": [
            {"account_code": "1020", "debit": amount},
            {"account_code": "3000", "credit": amount},
        ],
        **kwargs,
    }


class TestHealth:
    """Probes and metrics."""

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] == "healthy"

    async def test_ready_and_live(self, client):
        assert (await client.get("/ready")).json() == {"status": "ready"}
        assert (await client.get("/live")).json() == {"status": "alive"}

    async def test_metrics_expose_outbox_gauges(self, client):
        response = await client.get("/metrics")
        assert response.status_code == 200
        assert "outbox_events_pending" in response.text


class TestTenantHeaders:
    """Identity comes from the resolver's headers."""

    async def test_missing_company_header(self, client):
        response = await client.get(f"{API}/accounts")
        assert response.status_code == 400
        assert "X-Company-ID" in response.json()["detail"]

    async def test_invalid_company_header(self, client):
        response = await client.get(f"{API}/accounts", headers={"X-Company-ID": "not-a-uuid"})
        assert response.status_code == 400

    async def test_unknown_role(self, client, owner_headers):
        headers = {**owner_headers, "X-User-Role": "janitor"}
        response = await client.post(f"{API}/ledger/entries", headers=headers, json=_sale("1"))
        assert response.status_code == 400


class TestAccountsApi:
    """Chart of accounts endpoints."""

    async def test_install_template_is_idempotent(self, client, owner_headers):
        first = await client.post(f"{API}/accounts/install-template", headers=owner_headers)
        second = await client.post(f"{API}/accounts/install-template", headers=owner_headers)

        assert first.status_code == 201
        assert {a["code"] for a in first.json()} >= {"1020", "2200", "2279", "3000", "5000"}
        assert second.status_code == 201
        assert second.json() == []

    async def test_create_and_fetch(self, chart, client, owner_headers):
        response = await client.post(
            f"{API}/accounts",
            headers=owner_headers,
            json={"code": "1010", "name": "PostFinance", "nature": "asset", "parent_code": "10"},
        )
        assert response.status_code == 201
        assert response.json()["level"] == 3

        fetched = await client.get(f"{API}/accounts/1010", headers=owner_headers)
        assert fetched.json()["name"] == "PostFinance"

    async def test_duplicate_code(self, chart, client, owner_headers):
        response = await client.post(
            f"{API}/accounts",
            headers=owner_headers,
            json={"code": "1020", "name": "Banque bis", "nature": "asset"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "ValidationError"

    async def test_unknown_account(self, chart, client, owner_headers):
        response = await client.get(f"{API}/accounts/9999", headers=owner_headers)
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "AccountNotFoundError"
        assert body["context"]["account_code"] == "9999"

    async def test_has_entries(self, chart, client, owner_headers):
        before = await client.get(f"{API}/accounts/3000/has-entries", headers=owner_headers)
        await client.post(f"{API}/ledger/entries", headers=owner_headers, json=_sale("80.00"))
        after = await client.get(f"{API}/accounts/3000/has-entries", headers=owner_headers)

        assert before.json()["has_entries"] is False
        assert after.json()["has_entries"] is True

    async def test_used_account_cannot_be_deleted(self, chart, client, owner_headers):
        await client.post(f"{API}/ledger/entries", headers=owner_headers, json=_sale("80.00"))
        response = await client.delete(f"{API}/accounts/3000", headers=owner_headers)

        assert response.status_code == 422
        assert response.json()["code"] == "AccountInUseError"


class TestLedgerApi:
    """Posting, replay and reversal."""

    async def test_post_and_replay(self, chart, client, owner_headers):
        payload = _sale("1200.00", idempotency_key="manual-1", description="Cash sale")
        first = await client.post(f"{API}/ledger/entries", headers=owner_headers, json=payload)
        replay = await client.post(f"{API}/ledger/entries", headers=owner_headers, json=payload)

        assert first.status_code == 201
        assert first.json()["is_new"] is True
        assert replay.status_code == 201
        assert replay.json() == {"entry_id": first.json()["entry_id"], "is_new": False}

        entry = await client.get(
            f"{API}/ledger/entries/{first.json()['entry_id']}", headers=owner_headers
        )
        lines = {line["account_code"]: line for line in entry.json()["lines"]}
        assert Decimal(lines["1020"]["debit"]) == Decimal("1200.00")
        assert Decimal(lines["3000"]["credit"]) == Decimal("1200.00")

    async def test_unbalanced_entry(self, chart, client, owner_headers):
        payload = {
            "lines": [
                {"account_code": "1020", "debit": "100.00"},
                {"account_code": "3000", "credit": "90.00"},
            ]
        }
        response = await client.post(f"{API}/ledger/entries", headers=owner_headers, json=payload)

        assert response.status_code == 422
        assert response.json()["code"] == "UnbalancedEntryError"

    async def test_reverse_once(self, chart, client, owner_headers):
        posted = await client.post(f"{API}/ledger/entries", headers=owner_headers, json=_sale("50"))
        entry_id = posted.json()["entry_id"]

        reversal = await client.post(
            f"{API}/ledger/entries/{entry_id}/reverse",
            headers=owner_headers,
            json={"reason": "typo"},
        )
        again = await client.post(f"{API}/ledger/entries/{entry_id}/reverse", headers=owner_headers)

        assert reversal.status_code == 201
        assert again.status_code == 422
        assert again.json()["code"] == "AlreadyReversedError"

        balance = await client.get(f"{API}/accounts/1020/balance", headers=owner_headers)
        assert Decimal(balance.json()["balance"]) == Decimal("0")

    async def test_unknown_entry(self, chart, client, owner_headers):
        response = await client.get(f"{API}/ledger/entries/{uuid4()}", headers=owner_headers)
        assert response.status_code == 404

    async def test_trial_balance(self, chart, client, owner_headers):
        await client.post(f"{API}/ledger/entries", headers=owner_headers, json=_sale("300.00"))
        await client.post(f"{API}/ledger/entries", headers=owner_headers, json=_sale("45.50"))

        report = (await client.get(f"{API}/ledger/trial-balance", headers=owner_headers)).json()

        assert Decimal(report["total_debit"]) == Decimal(report["total_credit"]) == Decimal("345.50")
        revenue = next(row for row in report["rows"] if row["account_code"] == "3000")
        assert Decimal(revenue["balance"]) == Decimal("-345.50")


class TestPostingRulesApi:
    """Rule listing and dry-run resolution."""

    async def test_resolve_invoice_payment(self, posting_rules, client, owner_headers):
        response = await client.post(
            f"{API}/posting-rules/resolve",
            headers=owner_headers,
            json={
                "event_type": "invoice.paid",
                "payload": {"amount_total": "1200.00", "vat_rate": "0.077"},
            },
        )
        assert response.status_code == 200
        amounts = {line["account_code"]: Decimal(line["amount"]) for line in response.json()}
        assert amounts == {
            "1020": Decimal("1200.00"),
            "3000": Decimal("1114.21"),
            "2200": Decimal("85.79"),
        }

    async def test_resolve_without_rules(self, chart, client, owner_headers):
        response = await client.post(
            f"{API}/posting-rules/resolve",
            headers=owner_headers,
            json={"event_type": "invoice.paid", "payload": {"amount_total": "10"}},
        )
        assert response.status_code == 422
        assert response.json()["code"] == "NoPostingRuleError"


class TestOutboxApi:
    """Raising events and watching the backlog."""

    async def test_enqueue_and_stats(self, client, owner_headers):
        payload = {
            "event_type": "invoice.created",
            "source_type": "invoice",
            "source_id": "INV-2025-001",
            "payload": {"amount_total": "540.00"},
            "idempotency_key": "invoice:created:INV-2025-001",
        }
        first = await client.post(f"{API}/outbox/events", headers=owner_headers, json=payload)
        again = await client.post(f"{API}/outbox/events", headers=owner_headers, json=payload)

        assert first.status_code == 202
        assert first.json()["is_new"] is True
        assert again.json() == {"event_id": first.json()["event_id"], "is_new": False}

        stats = (await client.get(f"{API}/outbox/stats", headers=owner_headers)).json()
        assert stats["pending"] == 1
        assert stats["unprocessed"] == 1

    async def test_unknown_event_type(self, client, owner_headers):
        response = await client.post(
            f"{API}/outbox/events",
            headers=owner_headers,
            json={"event_type": "invoice.lost", "source_type": "invoice", "source_id": "X"},
        )
        assert response.status_code == 400

    async def test_other_tenant_cannot_read_event(self, client, owner_headers):
        queued = await client.post(
            f"{API}/outbox/events",
            headers=owner_headers,
            json={"event_type": "invoice.created", "source_type": "invoice", "source_id": "A"},
        )
        event_id = queued.json()["event_id"]

        own = await client.get(f"{API}/outbox/events/{event_id}", headers=owner_headers)
        foreign = await client.get(
            f"{API}/outbox/events/{event_id}", headers={"X-Company-ID": str(uuid4())}
        )

        assert own.status_code == 200
        assert own.json()["status"] == "pending"
        assert foreign.status_code == 404


class TestPayrunApi:
    """Payrun computation and approval over HTTP."""

    @staticmethod
    def _body(employee, **overrides) -> dict:
        return {
            "employee_id": str(employee.id),
            "period_year": 2025,
            "period_month": 1,
            "mode": "monthly",
            **overrides,
        }

    async def test_preview(self, employee, client, hr_headers):
        response = await client.post(
            f"{API}/payruns/preview", headers=hr_headers, json=self._body(employee)
        )
        assert response.status_code == 200
        draft = response.json()
        assert draft["period"] == "2025-01"
        assert Decimal(draft["gross"]) == Decimal("6000.00")
        assert Decimal(draft["net"]) == Decimal("5325.91")
        assert Decimal(draft["employer_cost"]) == Decimal("6758.10")

        listing = await client.get(f"{API}/payruns", headers=hr_headers)
        assert listing.json() == []

    async def test_preview_hourly_needs_hours(self, employee, client, hr_headers):
        response = await client.post(
            f"{API}/payruns/preview", headers=hr_headers, json=self._body(employee, mode="hourly")
        )
        assert response.status_code == 400

    async def test_unknown_employee(self, employee, client, hr_headers):
        body = {**self._body(employee), "employee_id": str(uuid4())}
        response = await client.post(f"{API}/payruns/preview", headers=hr_headers, json=body)
        assert response.status_code == 404

    async def test_approval_flow(self, employee, client, hr_headers, owner_headers):
        created = await client.post(f"{API}/payruns", headers=hr_headers, json=self._body(employee))
        assert created.status_code == 201
        payrun_id = created.json()["id"]
        assert created.json()["status"] == "draft"

        premature = await client.post(f"{API}/payruns/{payrun_id}/approve", headers=owner_headers)
        assert premature.status_code == 409
        assert premature.json()["code"] == "InvalidTransitionError"

        submitted = await client.post(f"{API}/payruns/{payrun_id}/submit", headers=hr_headers)
        assert submitted.json()["status"] == "submitted"

        self_approval = await client.post(f"{API}/payruns/{payrun_id}/approve", headers=hr_headers)
        assert self_approval.status_code == 403
        assert self_approval.json()["code"] == "ApprovalGateError"

        approved = await client.post(f"{API}/payruns/{payrun_id}/approve", headers=owner_headers)
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"
        assert approved.json()["approved_by"] == owner_headers["X-User-ID"]

        listing = await client.get(
            f"{API}/payruns", headers=hr_headers, params={"status": "approved"}
        )
        assert [p["id"] for p in listing.json()] == [payrun_id]

    async def test_viewer_cannot_submit(self, employee, client, hr_headers, viewer_headers):
        created = await client.post(f"{API}/payruns", headers=hr_headers, json=self._body(employee))
        response = await client.post(
            f"{API}/payruns/{created.json()['id']}/submit", headers=viewer_headers
        )
        assert response.status_code == 403

    async def test_duplicate_period(self, employee, client, hr_headers):
        await client.post(f"{API}/payruns", headers=hr_headers, json=self._body(employee))
        again = await client.post(f"{API}/payruns", headers=hr_headers, json=self._body(employee))
        assert again.status_code == 400

    async def test_edit_after_approval(self, employee, client, hr_headers, owner_headers):
        created = await client.post(f"{API}/payruns", headers=hr_headers, json=self._body(employee))
        payrun_id = created.json()["id"]
        await client.post(f"{API}/payruns/{payrun_id}/submit", headers=hr_headers)
        await client.post(f"{API}/payruns/{payrun_id}/approve", headers=owner_headers)

        can_modify = await client.get(f"{API}/payruns/{payrun_id}/can-modify", headers=owner_headers)
        assert can_modify.json()["can_modify"] is True

        without_reason = await client.patch(
            f"{API}/payruns/{payrun_id}",
            headers=owner_headers,
            json={"changes": {"aap_er": "40.00"}},
        )
        assert without_reason.status_code == 403

        edited = await client.patch(
            f"{API}/payruns/{payrun_id}",
            headers=owner_headers,
            json={"changes": {"aap_er": "40.00"}, "reason": "insurer correction"},
        )
        assert edited.status_code == 200
        assert edited.json()["status"] == "submitted"
        assert edited.json()["revision"] == 1
        assert Decimal(edited.json()["aap_er"]) == Decimal("40.00")

        audits = (await client.get(f"{API}/payruns/{payrun_id}/audits", headers=owner_headers)).json()
        aap = next(a for a in audits if a["field_name"] == "aap_er")
        assert aap["change_reason"] == "insurer correction"
        assert aap["status_at_change"] == "approved"
