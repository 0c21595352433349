"""
Tests end-to-end de l'API Flask.

Ces tests vérifient le flux complet :
HTTP request → Flask → Message Bus → Handlers → Repository → SQLite

On utilise le test client Flask avec une base SQLite en mémoire,
ce qui donne des tests rapides tout en couvrant toute la chaîne.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from echafaudage.adapters import orm, notifications
from echafaudage.entrypoints.flask_app import app
from echafaudage.service_layer import bootstrap, unit_of_work


class FakeNotifications(notifications.AbstractNotifications):
    def __init__(self):
        self.envoyés = []

    def send(self, destination: str, message: str) -> None:
        self.envoyés.append({"destination": destination, "message": message})


@pytest.fixture
def sqlite_bus():
    """Crée un message bus configuré avec SQLite en mémoire."""
    engine = create_engine("sqlite:///:memory:")
    orm.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine)

    uow = unit_of_work.SqlAlchemyUnitOfWork(session_factory=session_factory)
    bus = bootstrap.bootstrap(
        start_orm=False,
        uow=uow,
        notifications_adapter=FakeNotifications(),
    )
    return bus


@pytest.fixture
def client(sqlite_bus):
    """Client de test Flask avec le bus injecté."""
    import echafaudage.entrypoints.flask_app as flask_module

    original_bus = flask_module.bus
    flask_module.bus = sqlite_bus
    app.config["TESTING"] = True

    with app.test_client() as client:
        yield client

    flask_module.bus = original_bus


def créer_article(client, référence="POTEAU-2M", quantité=50) -> str:
    response = client.post("/catalogue", json={
        "reference": référence,
        "designation": référence.title(),
        "poids_unitaire": 8.5,
    })
    assert response.status_code == 201
    article_id = response.get_json()["article_id"]
    if quantité:
        response = client.post("/stock/initialiser", json={
            "lignes": [{"article_id": article_id, "quantite": quantité}],
        })
        assert response.status_code == 201
    return article_id


def créer_chantier(client, numéro="CH-001") -> str:
    response = client.post("/chantiers", json={
        "numero": numéro,
        "nom": "Résidence des Tilleuls",
        "date_debut": "2024-03-01",
    })
    assert response.status_code == 201
    return response.get_json()["chantier_id"]


class TestCatalogue:
    def test_créer_un_article(self, client):
        article_id = créer_article(client, quantité=0)
        assert article_id

    def test_référence_en_double(self, client):
        créer_article(client, quantité=0)
        response = client.post("/catalogue", json={
            "reference": "POTEAU-2M", "designation": "Autre", "poids_unitaire": 1,
        })
        assert response.status_code == 409
        assert response.get_json()["code"] == "reference_deja_utilisee"

    def test_champ_manquant(self, client):
        response = client.post("/catalogue", json={"reference": "X"})
        assert response.status_code == 400
        assert response.get_json()["code"] == "requete_invalide"

    def test_désactiver_puis_sortie_refusée(self, client):
        article_id = créer_article(client)
        chantier_id = créer_chantier(client)
        assert client.post(f"/catalogue/{article_id}/desactiver").status_code == 201
        response = client.post("/mouvements", json={
            "article_id": article_id, "type": "sortie", "quantite": 1, "chantier_id": chantier_id,
        })
        assert response.status_code == 409
        assert client.post(f"/catalogue/{article_id}/reactiver").status_code == 201


class TestMouvements:
    def test_sortie_retourne_le_solde(self, client):
        article_id = créer_article(client)
        chantier_id = créer_chantier(client)

        response = client.post("/mouvements", json={
            "article_id": article_id, "type": "sortie", "quantite": 20, "chantier_id": chantier_id,
        })

        assert response.status_code == 201
        assert response.get_json()["quantité_disponible"] == 30

    def test_stock_insuffisant(self, client):
        article_id = créer_article(client, quantité=5)
        chantier_id = créer_chantier(client)

        response = client.post("/mouvements", json={
            "article_id": article_id, "type": "sortie", "quantite": 8, "chantier_id": chantier_id,
        })

        assert response.status_code == 409
        corps = response.get_json()
        assert corps["code"] == "stock_insuffisant"
        assert corps["lignes"] == [{
            "article_id": article_id,
            "reference": "POTEAU-2M",
            "demandee": 8,
            "disponible": 5,
            "manquante": 3,
        }]

    def test_quantité_invalide(self, client):
        article_id = créer_article(client)
        response = client.post("/mouvements", json={
            "article_id": article_id, "type": "entree", "quantite": -3,
        })
        assert response.status_code == 400
        assert response.get_json()["code"] == "quantite_invalide"

    def test_article_inconnu(self, client):
        response = client.post("/mouvements", json={
            "article_id": "inconnu", "type": "entree", "quantite": 3,
        })
        assert response.status_code == 404

    def test_historique(self, client):
        article_id = créer_article(client)
        response = client.get(f"/mouvements?article_id={article_id}")
        assert response.status_code == 200
        [mouvement] = response.get_json()
        assert mouvement["type"] == "entree"
        assert mouvement["quantite"] == 50


class TestLecture:
    def test_stock_et_disponibilité(self, client):
        article_id = créer_article(client)

        stock = client.get("/stock").get_json()
        assert stock[0]["reference"] == "POTEAU-2M"
        assert client.get("/stock/POTEAU-2M").get_json()["quantite_disponible"] == 50
        assert client.get("/stock/INCONNU").status_code == 404

        disponibilité = client.get(f"/disponibilite/{article_id}?quantite=60").get_json()
        assert disponibilité == {
            "disponible": False,
            "quantité_disponible": 50,
            "quantité_manquante": 10,
        }

    def test_disponibilité_sans_quantité(self, client):
        article_id = créer_article(client)
        assert client.get(f"/disponibilite/{article_id}").status_code == 400


class TestMatérielHS:
    def test_réparer_et_rebut(self, client):
        article_id = créer_article(client)
        client.post("/mouvements", json={"article_id": article_id, "type": "hs", "quantite": 4})

        assert client.get("/hs").get_json()[0]["quantite_hs"] == 4
        response = client.post(f"/hs/{article_id}/reparer", json={"quantite": 3})
        assert response.status_code == 201
        response = client.post(f"/hs/{article_id}/rebut", json={"quantite": 1})
        assert response.get_json()["quantité_totale"] == 49
        assert client.get("/hs").get_json() == []


class TestChantiers:
    def test_livraison_retour_et_clôture(self, client):
        poteau = créer_article(client, "POTEAU-2M", 50)
        créer_article(client, "MOISE-3M", 10)
        chantier_id = créer_chantier(client)

        response = client.post(f"/chantiers/{chantier_id}/livraisons", json={
            "numero_liste": "LIV-1",
            "lignes": [
                {"reference": "POTEAU-2M", "quantite": 20},
                {"reference": "MOISE-3M", "quantite": 4},
            ],
        })
        assert response.status_code == 201

        response = client.post(f"/chantiers/{chantier_id}/retours", json={
            "numero_liste": "RET-1",
            "lignes": [{"reference": "MOISE-3M", "quantite": 4, "quantite_hs": 1}],
        })
        assert response.status_code == 201

        inventaire = client.get(f"/chantiers/{chantier_id}/inventaire").get_json()
        assert [(l["reference"], l["quantite_actuelle"]) for l in inventaire] == [("POTEAU-2M", 20)]

        response = client.post(f"/chantiers/{chantier_id}/cloture", json={
            "quantites_hs": {poteau: 5},
        })
        assert response.status_code == 201
        [état] = response.get_json()
        assert état["quantité_disponible"] == 45
        assert état["quantité_hs"] == 5

        assert client.get(f"/chantiers/{chantier_id}/inventaire").get_json() == []
        [résumé] = client.get("/chantiers").get_json()
        assert résumé["statut"] == "termine"
        assert résumé["nb_livraisons"] == 1

    def test_livraison_rejetée_rapporte_toutes_les_lignes(self, client):
        créer_article(client, "POTEAU-2M", 5)
        chantier_id = créer_chantier(client)

        response = client.post(f"/chantiers/{chantier_id}/livraisons", json={
            "numero_liste": "LIV-2",
            "lignes": [
                {"reference": "POTEAU-2M", "quantite": 8},
                {"reference": "INCONNU", "quantite": 1},
            ],
        })

        assert response.status_code == 409
        corps = response.get_json()
        assert corps["code"] == "import_rejete"
        assert corps["references_inconnues"] == ["INCONNU"]
        assert corps["lignes"][0]["manquante"] == 3
        assert client.get("/stock/POTEAU-2M").get_json()["quantite_sur_chantier"] == 0

    def test_liste_importée_deux_fois(self, client):
        créer_article(client, "POTEAU-2M", 5)
        chantier_id = créer_chantier(client)
        corps = {"numero_liste": "LIV-3", "lignes": [{"reference": "POTEAU-2M", "quantite": 1}]}

        assert client.post(f"/chantiers/{chantier_id}/livraisons", json=corps).status_code == 201
        response = client.post(f"/chantiers/{chantier_id}/livraisons", json=corps)
        assert response.status_code == 409
        assert response.get_json()["code"] == "liste_deja_importee"

    def test_retour_avec_quantité_hs_non_entière(self, client):
        poteau = créer_article(client, "POTEAU-2M", 10)
        chantier_id = créer_chantier(client)
        client.post("/mouvements", json={
            "article_id": poteau, "type": "sortie", "quantite": 5, "chantier_id": chantier_id,
        })

        response = client.post(f"/chantiers/{chantier_id}/retours", json={
            "numero_liste": "RET-9",
            "lignes": [{"reference": "POTEAU-2M", "quantite": 5, "quantite_hs": "2"}],
        })

        assert response.status_code == 409
        corps = response.get_json()
        assert corps["code"] == "import_rejete"
        assert len(corps["lignes_invalides"]) == 1
        assert client.get("/stock/POTEAU-2M").get_json()["quantite_sur_chantier"] == 5

    def test_ligne_qui_n_est_pas_un_objet(self, client):
        créer_article(client, "POTEAU-2M", 10)
        chantier_id = créer_chantier(client)

        response = client.post(f"/chantiers/{chantier_id}/livraisons", json={
            "numero_liste": "LIV-9",
            "lignes": ["POTEAU-2M;5"],
        })

        assert response.status_code == 400
        assert response.get_json()["code"] == "requete_invalide"

    def test_chantier_inconnu(self, client):
        response = client.post("/chantiers/inconnu/cloture", json={})
        assert response.status_code == 404

    def test_clôture_invalide(self, client):
        poteau = créer_article(client)
        chantier_id = créer_chantier(client)
        client.post("/mouvements", json={
            "article_id": poteau, "type": "sortie", "quantite": 2, "chantier_id": chantier_id,
        })
        response = client.post(f"/chantiers/{chantier_id}/cloture", json={
            "quantites_hs": {poteau: 3},
        })
        assert response.status_code == 400
        assert response.get_json()["code"] == "cloture_invalide"


class TestLocationsLayher:
    def test_cycle_de_vie(self, client):
        article_id = créer_article(client, "CADRE-LAYHER", 20)

        response = client.post("/layher/locations", json={
            "article_id": article_id,
            "numero_commande": "CMD1",
            "quantite": 10,
            "date_retour_prevue": "2024-06-30",
        })
        assert response.status_code == 201
        location_id = response.get_json()["location_id"]
        assert [l["numero_commande"] for l in client.get("/layher/locations").get_json()] == ["CMD1"]

        response = client.post(f"/layher/locations/{location_id}/retour", json={"quantite": 4})
        assert response.get_json()["statut"] == "en_cours"

        response = client.post(f"/layher/locations/{location_id}/retour")
        assert response.status_code == 201
        assert response.get_json()["statut"] == "retourne"
        assert client.get("/layher/locations").get_json() == []

        response = client.post(f"/layher/locations/{location_id}/retour", json={"quantite": 1})
        assert response.status_code == 409
        assert response.get_json()["code"] == "location_deja_retournee"

    def test_date_invalide(self, client):
        article_id = créer_article(client)
        response = client.post("/layher/locations", json={
            "article_id": article_id,
            "numero_commande": "CMD1",
            "quantite": 1,
            "date_location": "30/06/2024",
        })
        assert response.status_code == 400


def test_reconstruire_projections(client):
    créer_article(client)
    response = client.post("/projections/reconstruire", json={})
    assert response.status_code == 201
    assert response.get_json() == {"derives_corrigees": []}
