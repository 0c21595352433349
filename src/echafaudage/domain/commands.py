"""
Commands du domaine.

Les commands représentent des intentions : quelque chose que
le système doit faire. Contrairement aux events (faits passés),
les commands sont des demandes qui peuvent échouer.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional


class Command:
    """Classe de base pour toutes les commands."""
    pass


@dataclass(frozen=True)
class LigneImport:
    """Une ligne de liste de livraison ou de retour, déjà extraite du fichier."""

    référence: str
    quantité: int
    quantité_hs: int = 0


# --- Catalogue ---


@dataclass(frozen=True)
class CréerArticle(Command):
    """Ajoute un type d'élément au catalogue."""

    référence: str
    désignation: str
    poids_unitaire: float
    catégorie: Optional[str] = None
    référence_layher: Optional[str] = None


@dataclass(frozen=True)
class ModifierArticle(Command):
    """Met à jour les champs descriptifs d'un article (None = inchangé)."""

    article_id: str
    désignation: Optional[str] = None
    poids_unitaire: Optional[float] = None
    catégorie: Optional[str] = None
    référence_layher: Optional[str] = None


@dataclass(frozen=True)
class DésactiverArticle(Command):
    article_id: str


@dataclass(frozen=True)
class RéactiverArticle(Command):
    article_id: str


# --- Registre ---


@dataclass(frozen=True)
class InitialiserStock(Command):
    """Inventaire initial : une entrée par couple (article_id, quantité)."""

    lignes: tuple[tuple[str, int], ...]


@dataclass(frozen=True)
class EnregistrerMouvement(Command):
    """
    Demande d'ajout d'un mouvement au registre.

    Les mouvements layher_location / layher_retour passent par le
    cycle de vie des locations et exigent un numéro de commande.
    """

    article_id: str
    type: str
    quantité: int
    source: Optional[str] = None
    destination: Optional[str] = None
    chantier_id: Optional[str] = None
    liste_id: Optional[str] = None
    numéro_commande: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class RéparerÉléments(Command):
    """Remet en stock disponible des éléments HS réparés."""

    article_id: str
    quantité: int


@dataclass(frozen=True)
class MettreAuRebut(Command):
    """Sort définitivement des éléments HS du parc."""

    article_id: str
    quantité: int


@dataclass(frozen=True)
class ReconstruireProjections(Command):
    """Rejoue le registre pour un article, ou pour tous si article_id est None."""

    article_id: Optional[str] = None


# --- Chantiers ---


@dataclass(frozen=True)
class CréerChantier(Command):
    numéro: str
    nom: str
    adresse: Optional[str] = None
    date_début: Optional[date] = None


@dataclass(frozen=True)
class ImporterLivraison(Command):
    """Livraison d'une liste complète vers un chantier (tout ou rien)."""

    chantier_id: str
    numéro_liste: str
    lignes: tuple[LigneImport, ...]


@dataclass(frozen=True)
class ImporterRetour(Command):
    """Retour d'une liste complète depuis un chantier, avec les quantités HS."""

    chantier_id: str
    numéro_liste: str
    lignes: tuple[LigneImport, ...]


@dataclass(frozen=True)
class ClôturerChantier(Command):
    """
    Rapatrie tout le matériel d'un chantier.

    quantités_hs associe un article_id à la quantité déclarée
    endommagée ; les articles absents sont considérés en bon état.
    """

    chantier_id: str
    quantités_hs: dict[str, int] = field(default_factory=dict)


# --- Locations Layher ---


@dataclass(frozen=True)
class LouerLayher(Command):
    article_id: str
    numéro_commande: str
    quantité: int
    date_location: Optional[date] = None
    date_retour_prévue: Optional[date] = None
    coût_location: Optional[float] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class RetournerLocationLayher(Command):
    """
    Retour (total ou partiel) d'une location.

    La location est désignée par son id, ou par le couple
    (numéro_commande, article_id). quantité=None rend le reliquat.
    """

    location_id: Optional[str] = None
    quantité: Optional[int] = None
    date_retour: Optional[date] = None
    numéro_commande: Optional[str] = None
    article_id: Optional[str] = None
