import json

from dotenv import dotenv_values


def _cards(n):
    return json.dumps([
        {"question": f"Q{i} ?", "answer": f"R{i}", "tags": ["t"], "difficulty": 2, "collection": "Test"}
        for i in range(n)
    ])


def test_generate_cards(test_client, fake_openai):
    fake_openai.completions.replies.append(_cards(2))
    r = test_client.post("/api/generateCards", json={"text": "Un texte de cours.", "numberOfCards": 2})
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["status"] == "ok"
    assert len(data["cards"]) == 2
    assert data["cards"][0]["collection"] == "Test"


def test_generate_cards_input_errors(test_client):
    assert test_client.post("/api/generateCards", json={}).json()["reason"] == "text property not found"
    assert test_client.post("/api/generateCards", json={"text": ""}).json() == {"status": "empty"}
    r = test_client.post("/api/generateCards", json={"text": "x" * 20000})
    assert r.json()["status"] == "error"


def test_generate_cards_without_key(test_client):
    test_client.app.state.chat.set_api_key(None)
    r = test_client.post("/api/generateCards", json={"text": "Un texte."})
    assert r.json()["status"] == "error"
    assert test_client.get("/api/getGPTenabled").json()["enabled"] is False


def test_generate_cards_streams_progress_over_websocket(test_client, fake_openai):
    fake_openai.completions.replies.append(_cards(1))
    with test_client.websocket_connect("/ws") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "socketId"
        test_client.cookies.set("socketId", hello["data"])

        r = test_client.post("/api/generateCards", json={"text": "Un texte.", "numberOfCards": 1})
        assert r.json()["status"] == "ok"

        chunks = []
        while True:
            message = ws.receive_json()
            if message["type"] == "stop":
                assert message["data"] == {"status": "done"}
                break
            assert message["type"] == "CardGenerationInProgress"
            assert message["data"]["status"] == "working"
            chunks.append(message["data"]["chunk"])
        assert "".join(chunks) == _cards(1)


def test_get_wrong_answers(test_client, fake_openai):
    saved = test_client.post("/api/saveNewCards", json=[
        {"question": "Capitale de la France ?", "answer": "Paris", "tags": ["europe"]},
    ]).json()["cards"][0]
    fake_openai.completions.replies.append('["Lyon", "Nice", "Lille", "Brest"]')

    r = test_client.get("/api/getWrongAnswers", params={"cardId": saved["id"], "numberOfAnswers": 3})
    data = r.json()
    assert data["status"] == "ok"
    assert data["answers"] == ["Lyon", "Nice", "Lille"]

    r = test_client.get("/api/getWrongAnswers", params={"cardId": 999})
    assert r.json() == {"status": "error", "reason": "card not found", "answers": []}


def test_rephrase(test_client, fake_openai):
    fake_openai.completions.replies.append("Une phrase claire.")
    r = test_client.get("/api/rephrase", params={"text": "phrase pas claire"})
    assert r.json() == {"status": "ok", "rephrased": "Une phrase claire."}
    assert test_client.get("/api/rephrase").json()["status"] == "error"


def test_interpret_math(test_client, fake_openai):
    fake_openai.completions.replies.append("$$\\sqrt{2}$$")
    r = test_client.get("/api/interpretMath", params={"expression": "racine de 2"})
    assert r.json() == {"status": "ok", "result": ["$$\\sqrt{2}$$"]}
    assert test_client.get("/api/interpretMath").json()["reason"] == "expression not found"


def test_set_gpt_api_key(test_client, app_env):
    assert test_client.get("/api/getGPTenabled").json() == {"status": "ok", "enabled": True}

    r = test_client.post("/api/setGPTapiKey", json={"apiKey": "pas-une-cle"})
    assert r.json() == {"status": "error", "reason": "invalid"}
    # une clé refusée ne désactive pas la clé en place
    assert test_client.get("/api/getGPTenabled").json()["enabled"] is True

    new_key = "sk-" + "Z9" * 24
    r = test_client.post("/api/setGPTapiKey", json={"apiKey": new_key})
    assert r.json() == {"status": "ok"}
    assert test_client.app.state.chat.client.api_key == new_key
    assert dotenv_values(app_env / ".env")["OPENAI_SECRET_KEY"] == new_key
