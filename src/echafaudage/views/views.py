"""
Views (lecture) pour le pattern CQRS.

Les views sont des fonctions de lecture pure qui interrogent
directement la base de données, sans passer par le modèle de domaine.

C'est le côté Query de CQRS : on sépare les chemins d'écriture
(qui passent par le domaine et le message bus) des chemins de
lecture (qui interrogent directement les tables de projection).
Une lecture peut observer un état très légèrement en retard ;
le registre reste la référence.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import text

from echafaudage import config
from echafaudage.domain import model, projection
from echafaudage.service_layer import unit_of_work

_COLONNES_STOCK = """
    c.id AS article_id, c.reference, c.designation, c.categorie,
    c.poids_unitaire, c.actif,
    s.quantite_totale, s.quantite_disponible, s.quantite_sur_chantier,
    s.quantite_hs, s.quantite_layher,
    s.quantite_totale * c.poids_unitaire AS poids_total,
    s.quantite_disponible * c.poids_unitaire AS poids_disponible
"""


def stock_global(uow: unit_of_work.AbstractUnitOfWork) -> list[dict]:
    """Soldes de tous les articles, triés par référence."""
    with uow:
        results = uow.session.execute(
            text(
                f"SELECT {_COLONNES_STOCK} FROM stock_global s"
                " JOIN catalogue c ON c.id = s.article_id"
                " ORDER BY c.reference"
            )
        )
        return [dict(r._mapping) for r in results]


def stock_par_référence(référence: str, uow: unit_of_work.AbstractUnitOfWork) -> dict | None:
    with uow:
        result = uow.session.execute(
            text(
                f"SELECT {_COLONNES_STOCK} FROM stock_global s"
                " JOIN catalogue c ON c.id = s.article_id"
                " WHERE c.reference = :reference"
            ),
            dict(reference=référence),
        ).first()
        return dict(result._mapping) if result else None


def éléments_hs(uow: unit_of_work.AbstractUnitOfWork) -> list[dict]:
    """Articles ayant des éléments hors service en attente de réparation ou de rebut."""
    with uow:
        results = uow.session.execute(
            text(
                f"SELECT {_COLONNES_STOCK} FROM stock_global s"
                " JOIN catalogue c ON c.id = s.article_id"
                " WHERE s.quantite_hs > 0"
                " ORDER BY c.reference"
            )
        )
        return [dict(r._mapping) for r in results]


def inventaire_chantier(chantier_id: str, uow: unit_of_work.AbstractUnitOfWork) -> list[dict]:
    """Matériel encore présent sur un chantier."""
    with uow:
        results = uow.session.execute(
            text(
                "SELECT i.chantier_id, c.id AS article_id, c.reference, c.designation,"
                " c.poids_unitaire, i.quantite_livree, i.quantite_recue,"
                " i.quantite_livree - i.quantite_recue AS quantite_actuelle,"
                " (i.quantite_livree - i.quantite_recue) * c.poids_unitaire AS poids_actuel,"
                " i.dernier_mouvement_le"
                " FROM inventaires_chantier i"
                " JOIN catalogue c ON c.id = i.article_id"
                " WHERE i.chantier_id = :chantier_id"
                " AND i.quantite_livree - i.quantite_recue > 0"
                " ORDER BY c.reference"
            ),
            dict(chantier_id=chantier_id),
        )
        return [dict(r._mapping) for r in results]


def résumé_chantiers(uow: unit_of_work.AbstractUnitOfWork) -> list[dict]:
    """Chantiers avec leur nombre de livraisons/réceptions et les dernières dates."""
    with uow:
        results = uow.session.execute(
            text(
                "SELECT ch.id, ch.numero, ch.nom, ch.adresse, ch.statut,"
                " ch.date_debut, ch.date_fin,"
                " COUNT(DISTINCT CASE WHEN m.type = 'sortie' THEN m.liste_id END) AS nb_livraisons,"
                " COUNT(DISTINCT CASE WHEN m.type IN ('retour', 'hs') THEN m.liste_id END) AS nb_receptions,"
                " MAX(CASE WHEN m.type = 'sortie' THEN m.cree_le END) AS derniere_livraison,"
                " MAX(CASE WHEN m.type IN ('retour', 'hs') THEN m.cree_le END) AS derniere_reception"
                " FROM chantiers ch"
                " LEFT JOIN mouvements m ON m.chantier_id = ch.id"
                " GROUP BY ch.id, ch.numero, ch.nom, ch.adresse, ch.statut, ch.date_debut, ch.date_fin"
                " ORDER BY ch.numero"
            )
        )
        return [dict(r._mapping) for r in results]


def locations_actives(uow: unit_of_work.AbstractUnitOfWork) -> list[dict]:
    """Locations Layher en cours."""
    with uow:
        results = uow.session.execute(
            text(
                "SELECT l.id, l.article_id, c.reference, c.designation, l.numero_commande,"
                " l.quantite, l.quantite_retournee,"
                " l.quantite - l.quantite_retournee AS quantite_restante,"
                " l.date_location, l.date_retour_prevue, l.cout_location, l.statut, l.notes"
                " FROM locations_layher l"
                " JOIN catalogue c ON c.id = l.article_id"
                " WHERE l.statut = :statut"
                " ORDER BY l.date_location"
            ),
            dict(statut=model.LocationLayher.EN_COURS),
        )
        return [dict(r._mapping) for r in results]


def mouvements(
    uow: unit_of_work.AbstractUnitOfWork,
    limite: Optional[int] = None,
    article_id: Optional[str] = None,
    chantier_id: Optional[str] = None,
) -> list[dict]:
    """Historique du registre, du plus récent au plus ancien."""
    limite = limite or config.get_paramètres().limite_historique
    filtres = []
    params: dict = dict(limite=limite)
    if article_id:
        filtres.append("m.article_id = :article_id")
        params["article_id"] = article_id
    if chantier_id:
        filtres.append("m.chantier_id = :chantier_id")
        params["chantier_id"] = chantier_id
    where = f" WHERE {' AND '.join(filtres)}" if filtres else ""
    with uow:
        results = uow.session.execute(
            text(
                "SELECT m.id, m.article_id, c.reference, m.type, m.quantite, m.source,"
                " m.destination, m.chantier_id, m.liste_id, m.location_id, m.notes, m.cree_le"
                " FROM mouvements m"
                " JOIN catalogue c ON c.id = m.article_id"
                f"{where}"
                " ORDER BY m.cree_le DESC"
                " LIMIT :limite"
            ),
            params,
        )
        return [dict(r._mapping) for r in results]


def disponibilité(
    article_id: str, quantité: int, uow: unit_of_work.AbstractUnitOfWork
) -> model.Disponibilité:
    """
    Vérifie si `quantité` éléments peuvent sortir du stock disponible.

    Lecture indicative : la vérification qui fait foi est refaite
    dans la transaction d'écriture.
    """
    with uow:
        stock = uow.stocks.get(article_id)
        return projection.vérifier_disponibilité(stock.solde if stock else None, quantité)
