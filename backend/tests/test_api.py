"""End-to-end flows through the HTTP API."""


def test_health(api_client):
    assert api_client.get("/health").json() == {"status": "healthy"}


def test_nova_quote_to_deposit_invoice(api_client, sink, nova_project):

    assert api_client.get("/quotes/next-number", params={"client_code": "NOVA"}).json() == {"next_number": "D-NOVA-001"}

    response = api_client.post("/quotes/", json={"project_id": nova_project.id})
    assert response.status_code == 201
    quote = response.json()
    assert quote["number"] == "D-NOVA-001"
    assert quote["status"] == "DRAFT"
    assert quote["project"]["client"]["code"] == "NOVA"

    section = api_client.post(f"/quotes/{quote['id']}/sections", json={}).json()
    assert section["title"] == "Section 1"
    item = api_client.post(
        f"/quotes/sections/{section['id']}/items",
        json={"name": "Logo", "quantity": 2, "unit_price": 100},
    ).json()
    assert item["total"] == 200
    assert item["item_type"] == "SERVICE"

    quote = api_client.get(f"/quotes/{quote['id']}").json()
    assert (quote["subtotal"], quote["tps_amount"], quote["tvq_amount"], quote["total"]) == (200, 10, 19.95, 229.95)

    sent = api_client.post(f"/quotes/{quote['id']}/send").json()
    token = sent["public_token"]
    assert sent["status"] == "SENT"

    viewed = api_client.get(f"/public/quotes/{token}").json()
    assert viewed["status"] == "VIEWED"
    assert sink.types == ["QUOTE_VIEWED"]

    accepted = api_client.post(f"/public/quotes/{token}/accept", json={"selections": {str(item["id"]): True}})
    assert accepted.json()["status"] == "ACCEPTED"

    locked = api_client.post(f"/quotes/sections/{section['id']}/items", json={"name": "Late addition"})
    assert locked.status_code == 409
    assert locked.json()["error"] == "locked"

    deposit = api_client.post(f"/quotes/{quote['id']}/invoices", json={"invoice_type": "DEPOSIT"})
    assert deposit.status_code == 201
    assert deposit.json()["number"] == "F-NOVA-001"
    assert deposit.json()["total"] == 114.98


def test_error_responses(api_client, nova_project):
    quote = api_client.post("/quotes/", json={"project_id": nova_project.id}).json()

    missing = api_client.get("/quotes/999")
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Quote not found", "error": "not_found"}

    bad_move = api_client.post(f"/quotes/{quote['id']}/status", json={"status": "ACCEPTED"})
    assert bad_move.status_code == 409
    assert bad_move.json()["error"] == "invalid_transition"

    blank = api_client.post(f"/quotes/{quote['id']}/sections", json={"title": " "})
    assert blank.status_code == 400
    assert blank.json()["error"] == "validation_error"

    assert api_client.get("/public/quotes/not-a-token").status_code == 404


def test_invoice_items_and_reorder(api_client, nova_project):
    invoice = api_client.post("/invoices/", json={"project_id": nova_project.id}).json()
    assert invoice["number"] == "F-NOVA-001"

    first = api_client.post(f"/invoices/{invoice['id']}/items", json={"description": "Design", "unit_price": 100}).json()
    second = api_client.post(
        f"/invoices/{invoice['id']}/items",
        json={"description": "Retouching", "billing_mode": "HOURLY", "hours": "2", "hourly_rate": 60, "quantity": ""},
    ).json()
    assert second["total"] == 120
    assert second["quantity"] == 0

    reordered = api_client.patch(
        f"/invoices/{invoice['id']}/items",
        json={"order": [{"id": first["id"], "sort_order": 2}, {"id": second["id"], "sort_order": 1}]},
    ).json()
    assert [item["description"] for item in reordered["items"]] == ["Retouching", "Design"]
    assert reordered["subtotal"] == 220


def test_templates_api(api_client, nova_project):
    quote = api_client.post("/quotes/", json={"project_id": nova_project.id}).json()
    section = api_client.post(f"/quotes/{quote['id']}/sections", json={"title": "Design"}).json()
    api_client.post(f"/quotes/sections/{section['id']}/items", json={"name": "Logo", "quantity": 2, "unit_price": 100})

    template = api_client.post(f"/templates/from-quote/{quote['id']}", json={"name": "Branding"})
    assert template.status_code == 201

    created = api_client.post(
        f"/quotes/from-template/{template.json()['id']}",
        json={"project_id": nova_project.id, "tax_rates": {"tps_rate": 0.05, "tvq_rate": 0}},
    ).json()
    assert created["number"] == "D-NOVA-002"
    assert created["total"] == 210

    duplicated = api_client.post(f"/quotes/{quote['id']}/duplicate").json()
    assert duplicated["number"] == "D-NOVA-003"


def test_settings_and_notifications(api_client, db_session):
    settings = api_client.patch("/settings/", json={"late_fee_percent": 1.5}).json()
    assert settings["late_fee_percent"] == 1.5
    assert settings["default_tvq_rate"] == 0.09975

    assert api_client.patch("/settings/", json={"default_tps_rate": 5}).status_code == 422

    assert api_client.post("/notifications/check").json() == {"expired_quotes": [], "overdue_invoices": []}
    listing = api_client.get("/notifications/").json()
    assert listing == {"notifications": [], "total": 0, "unread_count": 0}
