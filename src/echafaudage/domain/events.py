"""
Events du domaine.

Les events représentent des faits qui se sont produits dans le registre
de stock. Ils sont immuables et nommés au passé.
"""

from dataclasses import dataclass
from typing import Optional


class Event:
    """Classe de base pour tous les events du domaine."""
    pass


@dataclass(frozen=True)
class MouvementEnregistré(Event):
    """Un mouvement a été ajouté au registre."""

    mouvement_id: str
    article_id: str
    type: str
    quantité: int
    chantier_id: Optional[str] = None


@dataclass(frozen=True)
class RuptureDeStock(Event):
    """Plus aucun élément disponible pour un article."""

    article_id: str


@dataclass(frozen=True)
class DériveDétectée(Event):
    """La projection stockée ne correspondait plus au rejeu du registre."""

    article_id: str


@dataclass(frozen=True)
class LocationRetournée(Event):
    """Une location Layher a été entièrement rendue."""

    location_id: str
    article_id: str
    numéro_commande: str


@dataclass(frozen=True)
class ChantierClôturé(Event):
    """Tout le matériel d'un chantier a été rapatrié."""

    chantier_id: str
    numéro: str
