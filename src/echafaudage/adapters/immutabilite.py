"""
Registre en ajout seul, imposé au niveau de l'ORM.

Des écouteurs SQLAlchemy interceptent toute tentative de modifier ou de
supprimer un Mouvement déjà écrit, avant que le SQL ne parte vers la
base. La transaction est alors interrompue et la base reste intacte.

Une correction s'écrit comme un mouvement compensatoire.
"""

from __future__ import annotations

import logging

from sqlalchemy import event

from echafaudage.domain import model

logger = logging.getLogger(__name__)


class MouvementImmuable(model.ErreurStock):
    """Levée quand on tente de modifier ou supprimer un mouvement enregistré."""

    code = "mouvement_immuable"


def _refuser_modification(mapper, connection, cible: model.Mouvement) -> None:
    logger.error("Tentative de modification du mouvement %s", cible.id)
    raise MouvementImmuable(f"Le mouvement {cible.id} ne peut pas être modifié")


def _refuser_suppression(mapper, connection, cible: model.Mouvement) -> None:
    logger.error("Tentative de suppression du mouvement %s", cible.id)
    raise MouvementImmuable(f"Le mouvement {cible.id} ne peut pas être supprimé")


def enregistrer_écouteurs() -> None:
    """Installe les écouteurs (sans effet s'ils sont déjà en place)."""
    if not event.contains(model.Mouvement, "before_update", _refuser_modification):
        event.listen(model.Mouvement, "before_update", _refuser_modification)
    if not event.contains(model.Mouvement, "before_delete", _refuser_suppression):
        event.listen(model.Mouvement, "before_delete", _refuser_suppression)

