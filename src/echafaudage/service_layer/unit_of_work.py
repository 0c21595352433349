"""
Pattern Unit of Work.

Le Unit of Work (UoW) gère la notion de transaction atomique.
Il coordonne l'écriture en base de données et la collecte
des événements émis par les agrégats au cours de la transaction.

Le UoW agit comme un context manager :
    with uow:
        # ... opérations sur les repositories ...
        uow.commit()

Tout ce qui est fait dans un même bloc est validé ensemble ou
pas du tout : c'est ce qui rend une clôture de chantier ou un
import de liste atomique.
"""

from __future__ import annotations

import abc
import logging

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from echafaudage import config
from echafaudage.adapters import repository
from echafaudage.domain import model

logger = logging.getLogger(__name__)


def _créer_engine():
    paramètres = config.get_paramètres()
    return create_engine(
        paramètres.url_base_donnees,
        isolation_level=paramètres.niveau_isolation,
    )


DEFAULT_ENGINE = _créer_engine()
DEFAULT_SESSION_FACTORY = sessionmaker(bind=DEFAULT_ENGINE)


class ErreurPersistance(model.ErreurStock):
    """
    Échec d'écriture (conflit de version, base indisponible...).

    La transaction a été annulée ; l'opération complète peut être rejouée.
    """

    code = "erreur_persistance"


class AbstractUnitOfWork(abc.ABC):
    """
    Interface abstraite du Unit of Work.

    Fournit les repositories `stocks`, `catalogue` et `chantiers`
    et gère commit/rollback. Le rollback est automatique si commit()
    n'est pas appelé (grâce au __exit__ du context manager).
    """

    stocks: repository.AbstractRepository
    catalogue: repository.AbstractCatalogue
    chantiers: repository.AbstractChantiers

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(self, *args: object) -> None:
        self.rollback()

    def commit(self) -> None:
        self._commit()

    def collect_new_events(self):
        """
        Collecte tous les événements émis par les agrégats vus
        pendant cette transaction.

        Parcourt les agrégats trackés par les repositories (via `seen`)
        et vide leur liste d'événements pour les passer au message bus.
        """
        for stock in self.stocks.seen:
            while stock.événements:
                yield stock.événements.pop(0)
        for chantier in self.chantiers.seen:
            while chantier.événements:
                yield chantier.événements.pop(0)

    @abc.abstractmethod
    def pour_lecture(self) -> AbstractUnitOfWork:
        """
        Un Unit of Work indépendant sur le même stockage, pour les views.

        Une lecture ne doit jamais réutiliser la session d'une écriture en cours.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def _commit(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self) -> None:
        raise NotImplementedError


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """
    Implémentation concrète du UoW avec SQLAlchemy.

    Crée une session à l'entrée du context manager,
    la ferme à la sortie. Rollback automatique si pas de commit.
    """

    def __init__(self, session_factory: sessionmaker = DEFAULT_SESSION_FACTORY):
        self.session_factory = session_factory

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        self.session: Session = self.session_factory()
        self.stocks = repository.SqlAlchemyRepository(self.session)
        self.catalogue = repository.SqlAlchemyCatalogue(self.session)
        self.chantiers = repository.SqlAlchemyChantiers(self.session)
        return super().__enter__()

    def __exit__(self, *args: object) -> None:
        super().__exit__(*args)
        self.session.close()

    def pour_lecture(self) -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork(self.session_factory)

    def _commit(self) -> None:
        try:
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            logger.warning("Conflit de version à l'écriture : %s", e)
            raise ErreurPersistance(
                "Le stock a été modifié par une autre opération, réessayez"
            ) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.exception("Échec du commit")
            raise ErreurPersistance(f"Échec d'écriture en base : {e}") from e

    def rollback(self) -> None:
        self.session.rollback()
