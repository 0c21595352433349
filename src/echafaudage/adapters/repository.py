"""
Pattern Repository.

Le repository fournit une abstraction sur la couche de persistance.
Il expose une interface de type collection (add, get) qui masque
les détails de l'accès aux données.

Les noms de méthodes du pattern (add, get) restent en anglais
car ce sont des conventions reconnues. Les méthodes spécifiques
au domaine (get_par_location, lister_par_chantier...) sont en français.

Trois repositories :
- AbstractRepository : les agrégats Stock (un par article)
- AbstractCatalogue : les articles du catalogue
- AbstractChantiers : les chantiers
"""

from __future__ import annotations

import abc

from sqlalchemy.orm import Session

from echafaudage.domain import model


class AbstractRepository(abc.ABC):
    """
    Interface abstraite du repository des stocks.

    Le pattern Template Method est utilisé : les méthodes publiques
    (add, get) gèrent le tracking via `seen`, puis délèguent
    aux méthodes abstraites préfixées _ que les sous-classes implémentent.
    """

    seen: set[model.Stock]

    def __init__(self) -> None:
        # `seen` trace tous les agrégats consultés pendant la transaction,
        # ce qui permet au Unit of Work de collecter leurs événements.
        self.seen: set[model.Stock] = set()

    def add(self, stock: model.Stock) -> None:
        """Ajoute un stock au repository et le marque comme vu."""
        self._add(stock)
        self.seen.add(stock)

    def get(self, article_id: str) -> model.Stock | None:
        """Récupère le stock d'un article et le marque comme vu."""
        stock = self._get(article_id)
        if stock:
            self.seen.add(stock)
        return stock

    def get_par_location(self, location_id: str) -> model.Stock | None:
        """Récupère le stock portant la location Layher donnée."""
        stock = self._get_par_location(location_id)
        if stock:
            self.seen.add(stock)
        return stock

    def lister(self) -> list[model.Stock]:
        stocks = self._lister()
        self.seen.update(stocks)
        return stocks

    def lister_par_chantier(self, chantier_id: str) -> list[model.Stock]:
        """Les stocks dont au moins un élément est encore sur le chantier."""
        stocks = [
            s for s in self._lister_par_chantier(chantier_id)
            if s.quantité_sur_chantier(chantier_id) > 0
        ]
        self.seen.update(stocks)
        return stocks

    def liste_déjà_importée(self, liste_id: str) -> bool:
        return self._liste_déjà_importée(liste_id)

    @abc.abstractmethod
    def _add(self, stock: model.Stock) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, article_id: str) -> model.Stock | None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get_par_location(self, location_id: str) -> model.Stock | None:
        raise NotImplementedError

    @abc.abstractmethod
    def _lister(self) -> list[model.Stock]:
        raise NotImplementedError

    @abc.abstractmethod
    def _lister_par_chantier(self, chantier_id: str) -> list[model.Stock]:
        raise NotImplementedError

    @abc.abstractmethod
    def _liste_déjà_importée(self, liste_id: str) -> bool:
        raise NotImplementedError


class AbstractCatalogue(abc.ABC):
    @abc.abstractmethod
    def add(self, article: model.ArticleCatalogue) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def get(self, article_id: str) -> model.ArticleCatalogue | None:
        raise NotImplementedError

    @abc.abstractmethod
    def get_par_référence(self, référence: str) -> model.ArticleCatalogue | None:
        raise NotImplementedError


class AbstractChantiers(abc.ABC):
    seen: set[model.Chantier]

    def __init__(self) -> None:
        self.seen: set[model.Chantier] = set()

    def add(self, chantier: model.Chantier) -> None:
        self._add(chantier)
        self.seen.add(chantier)

    def get(self, chantier_id: str) -> model.Chantier | None:
        chantier = self._get(chantier_id)
        if chantier:
            self.seen.add(chantier)
        return chantier

    @abc.abstractmethod
    def get_par_numéro(self, numéro: str) -> model.Chantier | None:
        raise NotImplementedError

    @abc.abstractmethod
    def _add(self, chantier: model.Chantier) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, chantier_id: str) -> model.Chantier | None:
        raise NotImplementedError


class SqlAlchemyRepository(AbstractRepository):
    """Implémentation concrète du repository des stocks avec SQLAlchemy."""

    def __init__(self, session: Session):
        super().__init__()
        self.session = session

    def _add(self, stock: model.Stock) -> None:
        self.session.add(stock)

    def _get(self, article_id: str) -> model.Stock | None:
        return self.session.get(model.Stock, article_id)

    def _get_par_location(self, location_id: str) -> model.Stock | None:
        return (
            self.session.query(model.Stock)
            .join(model.LocationLayher)
            .filter(model.LocationLayher.id == location_id)
            .first()
        )

    def _lister(self) -> list[model.Stock]:
        return self.session.query(model.Stock).all()

    def _lister_par_chantier(self, chantier_id: str) -> list[model.Stock]:
        return (
            self.session.query(model.Stock)
            .join(model.InventaireChantier)
            .filter(model.InventaireChantier.chantier_id == chantier_id)
            .all()
        )

    def _liste_déjà_importée(self, liste_id: str) -> bool:
        return (
            self.session.query(model.Mouvement)
            .filter_by(liste_id=liste_id)
            .first()
        ) is not None


class SqlAlchemyCatalogue(AbstractCatalogue):
    def __init__(self, session: Session):
        self.session = session

    def add(self, article: model.ArticleCatalogue) -> None:
        self.session.add(article)

    def get(self, article_id: str) -> model.ArticleCatalogue | None:
        return self.session.get(model.ArticleCatalogue, article_id)

    def get_par_référence(self, référence: str) -> model.ArticleCatalogue | None:
        return (
            self.session.query(model.ArticleCatalogue)
            .filter(model.ArticleCatalogue.référence == référence)
            .first()
        )


class SqlAlchemyChantiers(AbstractChantiers):
    def __init__(self, session: Session):
        super().__init__()
        self.session = session

    def _add(self, chantier: model.Chantier) -> None:
        self.session.add(chantier)

    def _get(self, chantier_id: str) -> model.Chantier | None:
        return self.session.get(model.Chantier, chantier_id)

    def get_par_numéro(self, numéro: str) -> model.Chantier | None:
        return (
            self.session.query(model.Chantier)
            .filter(model.Chantier.numéro == numéro)
            .first()
        )
