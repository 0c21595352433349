"""
Projection des soldes à partir du registre des mouvements.

Fonctions pures : elles ne lisent que les mouvements qu'on leur passe.
Le modèle est additif (chaque type de mouvement ajoute ou retire sa
quantité à des soldes fixes), donc l'ordre des mouvements n'a pas
d'importance : le rejeu complet et la mise à jour incrémentale
aboutissent au même résultat.

    type             totale  disponible  sur_chantier  hs   layher
    entree             +n       +n
    sortie                      -n           +n
    retour                      +n           -n
    hs (chantier)                            -n         +n
    hs (dépôt)                  -n                      +n
    reparation                  +n                      -n
    rebut              -n                               -n
    layher_location             -n                            +n
    layher_retour               +n                            -n
"""

from __future__ import annotations

from typing import Iterable, Optional

from echafaudage.domain import model


def débite_disponible(mouvement: model.Mouvement) -> bool:
    """Vrai si le mouvement fait baisser quantité_disponible."""
    type_ = model.TypeMouvement(mouvement.type)
    if type_ is model.TypeMouvement.HS:
        return not mouvement.chantier_id
    return type_ in (model.TypeMouvement.SORTIE, model.TypeMouvement.LAYHER_LOCATION)


def concerne_chantier(mouvement: model.Mouvement) -> bool:
    """Vrai si le mouvement modifie l'inventaire du chantier qu'il désigne."""
    if not mouvement.chantier_id:
        return False
    return model.TypeMouvement(mouvement.type) in (
        model.TypeMouvement.SORTIE,
        model.TypeMouvement.RETOUR,
        model.TypeMouvement.HS,
    )


def appliquer(solde: model.SoldeStock, mouvement: model.Mouvement) -> model.SoldeStock:
    """Mise à jour incrémentale (O(1)) d'un solde par un mouvement."""
    n = mouvement.quantité
    type_ = model.TypeMouvement(mouvement.type)
    T = model.TypeMouvement

    if type_ is T.ENTREE:
        solde.quantité_totale += n
        solde.quantité_disponible += n
    elif type_ is T.SORTIE:
        solde.quantité_disponible -= n
        solde.quantité_sur_chantier += n
    elif type_ is T.RETOUR:
        solde.quantité_disponible += n
        solde.quantité_sur_chantier -= n
    elif type_ is T.HS:
        # Endommagé sur chantier : quitte le chantier sans repasser par le dépôt.
        if mouvement.chantier_id:
            solde.quantité_sur_chantier -= n
        else:
            solde.quantité_disponible -= n
        solde.quantité_hs += n
    elif type_ is T.REPARATION:
        solde.quantité_hs -= n
        solde.quantité_disponible += n
    elif type_ is T.REBUT:
        solde.quantité_hs -= n
        solde.quantité_totale -= n
    elif type_ is T.LAYHER_LOCATION:
        solde.quantité_disponible -= n
        solde.quantité_layher += n
    elif type_ is T.LAYHER_RETOUR:
        solde.quantité_layher -= n
        solde.quantité_disponible += n
    return solde


def appliquer_chantier(
    inventaire: model.InventaireChantier, mouvement: model.Mouvement
) -> model.InventaireChantier:
    """Mise à jour incrémentale de l'inventaire d'un chantier."""
    type_ = model.TypeMouvement(mouvement.type)
    if type_ is model.TypeMouvement.SORTIE:
        inventaire.quantité_livrée += mouvement.quantité
    elif type_ in (model.TypeMouvement.RETOUR, model.TypeMouvement.HS):
        inventaire.quantité_reçue += mouvement.quantité
    if inventaire.dernier_mouvement_le is None or mouvement.créé_le > inventaire.dernier_mouvement_le:
        inventaire.dernier_mouvement_le = mouvement.créé_le
    return inventaire


def projeter(mouvements: Iterable[model.Mouvement]) -> dict[str, model.SoldeStock]:
    """Rejeu complet : solde global par article."""
    soldes: dict[str, model.SoldeStock] = {}
    for mouvement in mouvements:
        solde = soldes.get(mouvement.article_id)
        if solde is None:
            solde = soldes[mouvement.article_id] = model.SoldeStock(article_id=mouvement.article_id)
        appliquer(solde, mouvement)
    return soldes


def projeter_chantiers(
    mouvements: Iterable[model.Mouvement],
) -> dict[tuple[str, str], model.InventaireChantier]:
    """Rejeu complet : inventaire par couple (chantier_id, article_id)."""
    inventaires: dict[tuple[str, str], model.InventaireChantier] = {}
    for mouvement in mouvements:
        if not concerne_chantier(mouvement):
            continue
        clé = (mouvement.chantier_id, mouvement.article_id)
        inventaire = inventaires.get(clé)
        if inventaire is None:
            inventaire = inventaires[clé] = model.InventaireChantier(
                chantier_id=mouvement.chantier_id, article_id=mouvement.article_id
            )
        appliquer_chantier(inventaire, mouvement)
    return inventaires


def projeter_retours_layher(mouvements: Iterable[model.Mouvement]) -> dict[str, int]:
    """Quantité déjà rendue par location Layher."""
    retours: dict[str, int] = {}
    for mouvement in mouvements:
        if model.TypeMouvement(mouvement.type) is model.TypeMouvement.LAYHER_RETOUR and mouvement.location_id:
            retours[mouvement.location_id] = retours.get(mouvement.location_id, 0) + mouvement.quantité
    return retours


def vérifier_disponibilité(
    solde: Optional[model.SoldeStock], quantité: int
) -> model.Disponibilité:
    """
    Compare la quantité demandée au disponible projeté.

    Un article sans solde est traité comme indisponible.
    """
    if solde is None:
        return model.Disponibilité(
            disponible=False, quantité_disponible=0, quantité_manquante=quantité
        )
    disponible = solde.quantité_disponible
    return model.Disponibilité(
        disponible=disponible >= quantité,
        quantité_disponible=disponible,
        quantité_manquante=max(0, quantité - disponible),
    )
