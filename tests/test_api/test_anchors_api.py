from proofvault.config import FALLBACK_DISABLED


def _upload(api, text: str) -> str:
    return api.post("/api/credentials/upload", data={"jsonData": text}).json()["proofHash"]


def test_anchor_lookup_by_id_and_tx(client, wait_for_anchor):
    latest = wait_for_anchor(client, _upload(client, '{"a": 1}'))["anchoring"]["latest"]

    by_id = client.get(f"/api/anchors/{latest['id']}").json()["anchor"]
    by_tx = client.get(f"/api/anchors/tx/{latest['tx_hash']}").json()["anchor"]

    assert by_id["id"] == by_tx["id"] == latest["id"]
    assert by_id["explorer_url"].endswith(latest["tx_hash"])
    assert client.get("/api/anchors/unknown").status_code == 404
    assert client.get("/api/anchors/tx/0xunknown").status_code == 404


def test_stats_and_pending(client, wait_for_anchor):
    wait_for_anchor(client, _upload(client, '{"s": 1}'))

    stats = client.get("/api/anchors/stats").json()["stats"]
    pending = client.get("/api/anchors/pending").json()

    assert stats["by_status"] == {"confirmed": 1}
    assert pending == {"success": True, "anchors": [], "count": 0}


def test_retry_failed_anchor(make_client, chain, wait_for_anchor):
    chain.mode = "down"
    with make_client(anchor_fallback_policy=FALLBACK_DISABLED) as api:
        proof_hash = _upload(api, '{"retry": true}')
        failed = wait_for_anchor(api, proof_hash)["anchoring"]["latest"]
        assert failed["status"] == "failed"

        chain.mode = "ok"
        response = api.post("/api/anchors/retry", json={"anchorId": failed["id"]})
        assert response.status_code == 202
        fresh_id = response.json()["anchor"]["id"]

        settled = wait_for_anchor(api, proof_hash)
        rejected = api.post("/api/anchors/retry", json={"anchorId": fresh_id})

    assert settled["anchoring"]["count"] == 2
    assert settled["anchoring"]["latest"]["id"] == fresh_id
    assert settled["anchoring"]["latest"]["status"] == "confirmed"
    assert rejected.status_code == 400
