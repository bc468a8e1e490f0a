def _card(question="Capitale de la France ?", answer="Paris", tags=None, collection="Géographie", difficulty=2):
    return {
        "question": question,
        "answer": answer,
        "tags": tags or ["europe", "capitales"],
        "difficulty": difficulty,
        "collection": collection,
    }


def _save(client, *cards):
    r = client.post("/api/saveNewCards", json=list(cards))
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["status"] == "ok", data
    return data["cards"]


def test_save_new_cards_assigns_increasing_ids(test_client):
    saved = _save(
        test_client,
        _card(),
        _card("Capitale de l'Italie ?", "Rome"),
    )
    assert [c["id"] for c in saved] == [1, 2]
    assert saved[0]["timesStudied"] == 0
    assert saved[0]["dateLastStudied"] is None

    # un id fourni par le client est ignoré
    again = _save(test_client, {**_card("Capitale du Japon ?", "Tokyo"), "id": 99})
    assert again[0]["id"] == 3


def test_save_new_cards_rejects_non_array(test_client):
    r = test_client.post("/api/saveNewCards", json={"question": "q"})
    assert r.json() == {"status": "error", "reason": "Invalid data. Expected an array of cards."}


def test_save_new_cards_rejects_invalid_card(test_client):
    r = test_client.post("/api/saveNewCards", json=[_card(), {"question": "sans réponse", "tags": ["x"]}])
    data = r.json()
    assert data["status"] == "error"
    assert "index 1" in data["reason"]
    # rien n'a été enregistré
    assert test_client.get("/api/getCardCount", params={"all": True}).json()["count"] == 0


def test_get_cards_filters_and_pagination(test_client):
    _save(
        test_client,
        _card(),
        _card("Capitale de l'Italie ?", "Rome", difficulty=4),
        _card("H2O ?", "Eau", tags=["molécules"], collection="Chimie"),
    )

    r = test_client.get("/api/getCards", params={"numberOfCards": 10})
    assert len(r.json()["cards"]) == 3

    r = test_client.get("/api/getCards", params={"collection": "Géographie", "difficulty": 4})
    cards = r.json()["cards"]
    assert [c["answer"] for c in cards] == ["Rome"]

    r = test_client.get("/api/getCards", params={"tags": "molécules,europe", "method": "OR"})
    assert len(r.json()["cards"]) == 3

    r = test_client.get("/api/getCards", params={"numberOfCards": 1, "offset": 1})
    assert len(r.json()["cards"]) == 1

    r = test_client.get("/api/getCards", params={"search": "italie"})
    assert [c["answer"] for c in r.json()["cards"]] == ["Rome"]


def test_get_card_count(test_client):
    _save(test_client, _card(), _card("H2O ?", "Eau", tags=["molécules"], collection="Chimie"))
    assert test_client.get("/api/getCardCount", params={"all": True}).json()["count"] == 2
    assert test_client.get("/api/getCardCount", params={"collection": "Chimie"}).json()["count"] == 1
    assert test_client.get("/api/getCardCount", params={"id": 2}).json()["count"] == 1
    assert test_client.get("/api/getCardCount", params={"id": 42}).json()["count"] == 0


def test_collections_and_matching(test_client):
    _save(test_client, _card(), _card("H2O ?", "Eau", tags=["molécules"], collection="Chimie"))
    assert sorted(test_client.get("/api/getCollections").json()["collections"]) == ["Chimie", "Géographie"]

    data = test_client.get("/api/collectionMatch", params={"name": "Chi"}).json()
    assert data["status"] == "ok"
    assert data["collectionsMatchFirstChars"] == ["Chimie"]
    assert data["collectionsMatchFuzzy"][0] == "Chimie"


def test_tag_match(test_client):
    _save(test_client, _card(tags=["europe", "capitales"]))
    data = test_client.get("/api/tagMatch", params={"tag": "eur"}).json()
    assert data["tagsMatchFirstChars"] == ["europe"]
    assert data["tagsExistExact"] is False
    assert test_client.get("/api/tagMatch", params={"tag": "europe"}).json()["tagsExistExact"] is True
    assert test_client.get("/api/tagMatch", params={"tag": "eurpoe"}).json()["tagsExistFuzzy"] is True

    r = test_client.get("/api/tagMatch")
    assert r.json() == {"status": "error", "reason": "invalid data type"}


def test_update_card_moves_collection_and_keeps_id(test_client):
    card = _save(test_client, _card())[0]
    r = test_client.post("/api/updateCard", json={"id": card["id"], "collection": "Europe", "difficulty": 5})
    data = r.json()
    assert data["status"] == "ok" and data["success"] is True
    assert data["oldCard"]["collection"] == "Géographie"
    assert data["newCard"]["collection"] == "Europe"
    assert data["newCard"]["id"] == card["id"]
    assert data["newCard"]["difficulty"] == 5

    assert test_client.get("/api/getCardCount", params={"collection": "Géographie"}).json()["count"] == 0
    assert test_client.get("/api/getCardCount", params={"collection": "Europe"}).json()["count"] == 1


def test_update_card_errors(test_client):
    card = _save(test_client, _card())[0]
    assert test_client.post("/api/updateCard", json={"question": "x"}).json()["reason"] == "invalid id"
    assert test_client.post("/api/updateCard", json={"id": 77}).json()["reason"] == "card not found"
    r = test_client.post("/api/updateCard", json={"id": card["id"], "difficulty": 9})
    assert r.json()["reason"] == "invalid card data"


def test_delete_card(test_client):
    card = _save(test_client, _card())[0]
    r = test_client.post("/api/deleteCard", json={"id": card["id"]})
    data = r.json()
    assert data["success"] is True
    assert data["card"]["question"] == card["question"]
    assert test_client.get("/api/getCardCount", params={"all": True}).json()["count"] == 0
    assert test_client.post("/api/deleteCard", json={"id": card["id"]}).json()["reason"] == "card not found"
    assert test_client.post("/api/deleteCard", json={"id": "abc"}).json()["reason"] == "invalid id"


def test_cards_survive_restart(make_client):
    with make_client() as client:
        _save(client, _card(), _card("Capitale de l'Italie ?", "Rome"))

    with make_client() as client:
        assert client.get("/api/getCardCount", params={"all": True}).json()["count"] == 2
        assert _save(client, _card("Capitale du Japon ?", "Tokyo"))[0]["id"] == 3


def test_update_card_can_clear_date_last_studied(test_client):
    card = _save(test_client, _card())[0]
    r = test_client.post(
        "/api/updateCard",
        json={"id": card["id"], "dateLastStudied": "2024-05-01T10:00:00Z", "timesStudied": 1},
    )
    data = r.json()
    assert data["oldCard"]["dateLastStudied"] is None
    assert data["newCard"]["dateLastStudied"].startswith("2024-05-01")

    r = test_client.post("/api/updateCard", json={"id": card["id"], "dateLastStudied": None})
    data = r.json()
    assert data["success"] is True
    assert data["oldCard"]["dateLastStudied"].startswith("2024-05-01")
    assert data["newCard"]["dateLastStudied"] is None
    assert data["newCard"]["timesStudied"] == 1

    # null sur un champ obligatoire : ignoré
    r = test_client.post("/api/updateCard", json={"id": card["id"], "question": None})
    assert r.json()["newCard"]["question"] == card["question"]
