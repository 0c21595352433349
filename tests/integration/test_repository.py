"""
Tests d'intégration des Repositories avec SQLite en mémoire.

Ces tests vérifient que le mapping ORM fonctionne correctement :
- Sauvegarder et recharger un Stock avec son registre et ses projections
- Les inventaires de chantier et les locations survivent à un aller-retour en BDD
- Les recherches par location, par chantier et par liste fonctionnent
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from echafaudage.adapters import orm, repository
from echafaudage.domain.model import (
    ArticleCatalogue,
    Chantier,
    LocationLayher,
    Mouvement,
    Stock,
    TypeMouvement as T,
)


def make_session():
    """Crée une session SQLite en mémoire avec les tables."""
    engine = create_engine("sqlite:///:memory:")
    orm.metadata.create_all(engine)
    return sessionmaker(bind=engine)()


def stock_livré(article_id: str = "A") -> Stock:
    stock = Stock(article_id=article_id)
    stock.enregistrer(Mouvement(article_id, T.ENTREE, 50))
    stock.enregistrer(Mouvement(article_id, T.SORTIE, 20, chantier_id="S1", liste_id="LIV-1"))
    return stock


class TestSqlAlchemyRepository:
    def test_sauvegarder_et_recharger_un_stock(self):
        session = make_session()
        repo = repository.SqlAlchemyRepository(session)
        repo.add(stock_livré())
        session.commit()
        session.expunge_all()

        rechargé = repository.SqlAlchemyRepository(session).get("A")
        assert rechargé is not None
        assert [m.type for m in rechargé.mouvements] == [T.ENTREE, T.SORTIE]
        assert rechargé.solde.quantité_disponible == 30
        assert rechargé.solde.quantité_sur_chantier == 20
        assert rechargé.quantité_sur_chantier("S1") == 20
        assert rechargé.numéro_version == 2
        assert rechargé.événements == []

    def test_le_rejeu_après_rechargement_ne_détecte_aucune_dérive(self):
        session = make_session()
        repo = repository.SqlAlchemyRepository(session)
        repo.add(stock_livré())
        session.commit()
        session.expunge_all()

        assert repository.SqlAlchemyRepository(session).get("A").reconstruire() is False

    def test_locations_rechargées(self):
        session = make_session()
        repo = repository.SqlAlchemyRepository(session)
        stock = Stock(article_id="B")
        stock.enregistrer(Mouvement("B", T.ENTREE, 10))
        location = stock.louer("CMD1", 6)
        stock.retourner_location(location.id, 2)
        location_id = location.id
        repo.add(stock)
        session.commit()
        session.expunge_all()

        rechargé = repository.SqlAlchemyRepository(session).get_par_location(location_id)
        assert rechargé.article_id == "B"
        location_rechargée = rechargé.location(location_id)
        assert location_rechargée.statut == LocationLayher.EN_COURS
        assert location_rechargée.quantité_retournée == 2
        assert rechargé.solde.quantité_layher == 4

    def test_lister_par_chantier_ignore_les_chantiers_vidés(self):
        session = make_session()
        repo = repository.SqlAlchemyRepository(session)
        plein = stock_livré("A")
        vidé = stock_livré("B")
        vidé.enregistrer(Mouvement("B", T.RETOUR, 20, chantier_id="S1"))
        repo.add(plein)
        repo.add(vidé)
        session.commit()

        assert [s.article_id for s in repo.lister_par_chantier("S1")] == ["A"]
        assert repo.lister_par_chantier("S2") == []

    def test_liste_déjà_importée(self):
        session = make_session()
        repo = repository.SqlAlchemyRepository(session)
        repo.add(stock_livré())
        session.commit()

        assert repo.liste_déjà_importée("LIV-1")
        assert not repo.liste_déjà_importée("LIV-2")

    def test_get_retourne_none_si_article_inexistant(self):
        session = make_session()
        repo = repository.SqlAlchemyRepository(session)

        assert repo.get("INEXISTANT") is None

    def test_seen_trace_les_agrégats(self):
        session = make_session()
        repo = repository.SqlAlchemyRepository(session)
        stock = Stock(article_id="C")

        repo.add(stock)
        session.commit()

        assert stock in repo.seen
        repo2 = repository.SqlAlchemyRepository(session)
        repo2.get("C")
        assert len(repo2.seen) == 1


class TestCatalogueEtChantiers:
    def test_article_par_référence(self):
        session = make_session()
        catalogue = repository.SqlAlchemyCatalogue(session)
        article = ArticleCatalogue("POTEAU-2M", "Poteau 2 m", 8.5, catégorie="poteaux")
        catalogue.add(article)
        article_id = article.id
        session.commit()
        session.expunge_all()

        catalogue = repository.SqlAlchemyCatalogue(session)
        trouvé = catalogue.get_par_référence("POTEAU-2M")
        assert trouvé.id == article_id
        assert trouvé.désignation == "Poteau 2 m"
        assert trouvé.actif
        assert catalogue.get_par_référence("INCONNU") is None

    def test_chantier_rechargé_avec_événements_vides(self):
        session = make_session()
        chantiers = repository.SqlAlchemyChantiers(session)
        chantier = Chantier("CH-001", "Résidence des Tilleuls", adresse="12 rue des Lilas")
        chantiers.add(chantier)
        session.commit()
        session.expunge_all()

        rechargé = repository.SqlAlchemyChantiers(session).get_par_numéro("CH-001")
        assert rechargé.nom == "Résidence des Tilleuls"
        assert rechargé.est_actif
        assert rechargé.événements == []
