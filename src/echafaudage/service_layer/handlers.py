"""
Handlers pour les commands et events.

Les handlers sont les fonctions qui traitent les commands et events
transitant par le message bus.

- Command handlers : exécutent une action (peuvent échouer)
- Event handlers : réagissent à un fait passé (ne doivent pas échouer)

Chaque command handler travaille dans un seul `with uow:` : soit tous
les mouvements qu'il produit sont validés, soit aucun. Les handlers
d'écriture renvoient les soldes à jour, pour que l'appelant voie
immédiatement le résultat de son action.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from echafaudage.domain import commands, events, model

if TYPE_CHECKING:
    from echafaudage.adapters.notifications import AbstractNotifications
    from echafaudage.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

T = model.TypeMouvement


# --- Exceptions ---


class ArticleInconnu(model.ErreurStock):
    """Levée quand un article référencé n'existe pas dans le catalogue."""

    code = "article_inconnu"


class ArticleInactif(model.ErreurStock):
    """Levée quand on fait entrer ou sortir un article désactivé."""

    code = "article_inactif"


class RéférenceDéjàUtilisée(model.ErreurStock):
    code = "reference_deja_utilisee"


class ChantierInconnu(model.ErreurStock):
    code = "chantier_inconnu"


class ChantierDéjàExistant(model.ErreurStock):
    code = "chantier_deja_existant"


class ChantierTerminé(model.ErreurStock):
    """Levée quand on livre ou clôture un chantier déjà terminé."""

    code = "chantier_termine"


class ListeDéjàImportée(model.ErreurStock):
    """Levée quand une liste de livraison/retour a déjà produit des mouvements."""

    code = "liste_deja_importee"


class ImportRejeté(model.ErreurStock):
    """
    Levée quand au moins une ligne d'un import est refusée.

    Toutes les lignes fautives sont rapportées ensemble ; rien n'est écrit.
    """

    code = "import_rejete"

    def __init__(
        self,
        références_inconnues: list[str] | None = None,
        lignes_manquantes: list[model.LigneManquante] | None = None,
        lignes_invalides: list[str] | None = None,
    ):
        self.références_inconnues = références_inconnues or []
        self.lignes_manquantes = lignes_manquantes or []
        self.lignes_invalides = lignes_invalides or []
        parties = []
        if self.références_inconnues:
            parties.append(
                f"{len(self.références_inconnues)} référence(s) non trouvée(s) dans le catalogue : "
                + ", ".join(self.références_inconnues)
            )
        if self.lignes_manquantes:
            parties.append(
                "Stock insuffisant : " + " ; ".join(str(l) for l in self.lignes_manquantes)
            )
        if self.lignes_invalides:
            parties.append("Lignes invalides : " + " ; ".join(self.lignes_invalides))
        super().__init__(" | ".join(parties))


class ClôtureInvalide(model.ErreurStock):
    """Levée quand les quantités HS fournies pour une clôture sont incohérentes."""

    code = "cloture_invalide"

    def __init__(self, lignes: list[str]):
        self.lignes = lignes
        super().__init__("Clôture impossible : " + " ; ".join(lignes))


# --- Accès ---


def _article(
    uow: AbstractUnitOfWork, article_id: str, type_: Optional[model.TypeMouvement] = None
) -> model.ArticleCatalogue:
    article = uow.catalogue.get(article_id)
    if article is None:
        raise ArticleInconnu(f"Article inconnu : {article_id}")
    if type_ is not None and not article.actif and type_ not in model.TYPES_AUTORISÉS_SI_INACTIF:
        raise ArticleInactif(f"L'article {article.référence} est désactivé")
    return article


def _stock(uow: AbstractUnitOfWork, article_id: str) -> model.Stock:
    stock = uow.stocks.get(article_id)
    if stock is None:
        raise ArticleInconnu(f"Aucun stock pour l'article {article_id}")
    return stock


def _chantier(uow: AbstractUnitOfWork, chantier_id: str) -> model.Chantier:
    chantier = uow.chantiers.get(chantier_id)
    if chantier is None:
        raise ChantierInconnu(f"Chantier inconnu : {chantier_id}")
    return chantier


def _avec_références(
    uow: AbstractUnitOfWork, lignes: list[model.LigneManquante]
) -> list[model.LigneManquante]:
    résultat = []
    for ligne in lignes:
        article = uow.catalogue.get(ligne.article_id)
        résultat.append(replace(ligne, référence=article.référence if article else None))
    return résultat


# --- Command Handlers : catalogue ---


def créer_article(
    cmd: commands.CréerArticle,
    uow: AbstractUnitOfWork,
) -> str:
    """
    Ajoute un article au catalogue et ouvre son stock (vide).

    Retourne l'identifiant de l'article.
    """
    with uow:
        if uow.catalogue.get_par_référence(cmd.référence) is not None:
            raise RéférenceDéjàUtilisée(f"Référence déjà utilisée : {cmd.référence}")
        article = model.ArticleCatalogue(
            référence=cmd.référence,
            désignation=cmd.désignation,
            poids_unitaire=cmd.poids_unitaire,
            catégorie=cmd.catégorie,
            référence_layher=cmd.référence_layher,
        )
        uow.catalogue.add(article)
        uow.stocks.add(model.Stock(article_id=article.id))
        article_id = article.id
        uow.commit()
    logger.info("Article %s ajouté au catalogue", cmd.référence)
    return article_id


def modifier_article(
    cmd: commands.ModifierArticle,
    uow: AbstractUnitOfWork,
) -> None:
    with uow:
        article = _article(uow, cmd.article_id)
        article.modifier(
            désignation=cmd.désignation,
            poids_unitaire=cmd.poids_unitaire,
            catégorie=cmd.catégorie,
            référence_layher=cmd.référence_layher,
        )
        uow.commit()


def désactiver_article(
    cmd: commands.DésactiverArticle,
    uow: AbstractUnitOfWork,
) -> None:
    """Retrait logique : l'article reste référencé par l'historique."""
    with uow:
        article = _article(uow, cmd.article_id)
        article.désactiver()
        uow.commit()
    logger.info("Article %s désactivé", cmd.article_id)


def réactiver_article(
    cmd: commands.RéactiverArticle,
    uow: AbstractUnitOfWork,
) -> None:
    with uow:
        article = _article(uow, cmd.article_id)
        article.réactiver()
        uow.commit()


# --- Command Handlers : registre ---


def initialiser_stock(
    cmd: commands.InitialiserStock,
    uow: AbstractUnitOfWork,
) -> list[model.ÉtatStock]:
    """Enregistre l'inventaire initial sous forme d'entrées."""
    with uow:
        stocks = []
        for article_id, quantité in cmd.lignes:
            _article(uow, article_id, T.ENTREE)
            stock = _stock(uow, article_id)
            stock.enregistrer(
                model.Mouvement(
                    article_id=article_id,
                    type=T.ENTREE,
                    quantité=quantité,
                    source="Inventaire initial",
                    notes="Initialisation du stock",
                )
            )
            stocks.append(stock)
        états = [s.solde.instantané() for s in stocks]
        uow.commit()
    return états


def enregistrer_mouvement(
    cmd: commands.EnregistrerMouvement,
    uow: AbstractUnitOfWork,
) -> model.ÉtatStock:
    """
    Ajoute un mouvement au registre après vérification du solde concerné.

    Retourne le solde de l'article après écriture.
    Lève ArticleInconnu, ArticleInactif, QuantitéInvalide,
    MouvementInvalide, StockInsuffisant ou ChantierInconnu.
    """
    type_ = model.type_mouvement(cmd.type)
    model.vérifier_quantité(cmd.quantité)
    with uow:
        _article(uow, cmd.article_id, type_)
        stock = _stock(uow, cmd.article_id)
        if cmd.chantier_id:
            chantier = _chantier(uow, cmd.chantier_id)
            if type_ is T.SORTIE and not chantier.est_actif:
                raise ChantierTerminé(f"Le chantier {chantier.numéro} est terminé")
        try:
            if type_ is T.LAYHER_LOCATION:
                stock.louer(cmd.numéro_commande, cmd.quantité, notes=cmd.notes)
            elif type_ is T.LAYHER_RETOUR:
                location = stock.location_par_commande(cmd.numéro_commande or "")
                if location is None:
                    raise model.LocationInconnue(
                        f"Aucune location {cmd.numéro_commande} pour cet article"
                    )
                stock.retourner_location(location.id, cmd.quantité)
            else:
                stock.enregistrer(
                    model.Mouvement(
                        article_id=cmd.article_id,
                        type=type_,
                        quantité=cmd.quantité,
                        source=cmd.source,
                        destination=cmd.destination,
                        chantier_id=cmd.chantier_id,
                        liste_id=cmd.liste_id,
                        notes=cmd.notes,
                    )
                )
        except model.StockInsuffisant as e:
            lignes = _avec_références(uow, e.lignes)
            logger.warning("Mouvement %s refusé : %s", type_.value, lignes)
            raise model.StockInsuffisant(lignes) from e
        état = stock.solde.instantané()
        uow.commit()
    return état


def réparer_éléments(
    cmd: commands.RéparerÉléments,
    uow: AbstractUnitOfWork,
) -> model.ÉtatStock:
    return enregistrer_mouvement(
        commands.EnregistrerMouvement(
            article_id=cmd.article_id,
            type=T.REPARATION.value,
            quantité=cmd.quantité,
            source="Réparation",
            destination="Stock disponible",
            notes="Élément réparé et remis en stock",
        ),
        uow=uow,
    )


def mettre_au_rebut(
    cmd: commands.MettreAuRebut,
    uow: AbstractUnitOfWork,
) -> model.ÉtatStock:
    return enregistrer_mouvement(
        commands.EnregistrerMouvement(
            article_id=cmd.article_id,
            type=T.REBUT.value,
            quantité=cmd.quantité,
            source="Éléments HS",
            destination="Rebut",
            notes="Élément mis au rebut définitivement",
        ),
        uow=uow,
    )


def reconstruire_projections(
    cmd: commands.ReconstruireProjections,
    uow: AbstractUnitOfWork,
) -> list[str]:
    """
    Rejoue le registre et réécrit les projections.

    Retourne les article_id pour lesquels une dérive a été corrigée.
    """
    with uow:
        if cmd.article_id is not None:
            stocks = [_stock(uow, cmd.article_id)]
        else:
            stocks = uow.stocks.lister()
        corrigés = [s.article_id for s in stocks if s.reconstruire()]
        uow.commit()
    logger.info("Projections reconstruites (%d stock(s), %d dérive(s))", len(stocks), len(corrigés))
    return corrigés


# --- Command Handlers : chantiers ---


def créer_chantier(
    cmd: commands.CréerChantier,
    uow: AbstractUnitOfWork,
) -> str:
    with uow:
        if uow.chantiers.get_par_numéro(cmd.numéro) is not None:
            raise ChantierDéjàExistant(f"Chantier déjà existant : {cmd.numéro}")
        chantier = model.Chantier(
            numéro=cmd.numéro, nom=cmd.nom, adresse=cmd.adresse, date_début=cmd.date_début
        )
        uow.chantiers.add(chantier)
        chantier_id = chantier.id
        uow.commit()
    return chantier_id


def _entier(valeur: object) -> bool:
    return isinstance(valeur, int) and not isinstance(valeur, bool)


def _regrouper(
    lignes: tuple[commands.LigneImport, ...],
) -> tuple[dict[str, list[int]], list[str]]:
    """
    Fusionne les lignes par référence : {référence: [quantité, quantité_hs]}.

    Les lignes sans référence ou sans quantité entière positive sont ignorées.
    Une quantité HS qui n'est pas un entier positif ou nul rend la ligne
    invalide ; ces lignes sont renvoyées à part, toutes ensemble.
    """
    regroupées: dict[str, list[int]] = {}
    invalides: list[str] = []
    for ligne in lignes:
        if not ligne.référence or not _entier(ligne.quantité) or ligne.quantité <= 0:
            continue
        quantité_hs = 0 if ligne.quantité_hs is None else ligne.quantité_hs
        if not _entier(quantité_hs) or quantité_hs < 0:
            invalides.append(f"{ligne.référence}: quantité HS invalide ({ligne.quantité_hs!r})")
            continue
        cumul = regroupées.setdefault(ligne.référence, [0, 0])
        cumul[0] += ligne.quantité
        cumul[1] += quantité_hs
    return regroupées, invalides


def _préparer_import(
    uow: AbstractUnitOfWork,
    cmd: commands.ImporterLivraison | commands.ImporterRetour,
    préfixe: str,
) -> tuple[model.Chantier, str]:
    chantier = _chantier(uow, cmd.chantier_id)
    numéro = cmd.numéro_liste or f"{préfixe}-{datetime.now():%Y%m%d%H%M%S}"
    if uow.stocks.liste_déjà_importée(numéro):
        raise ListeDéjàImportée(f"La liste {numéro} a déjà été importée")
    return chantier, numéro


def importer_livraison(
    cmd: commands.ImporterLivraison,
    uow: AbstractUnitOfWork,
) -> list[model.ÉtatStock]:
    """
    Livre une liste complète sur un chantier, en tout ou rien.

    Toutes les références inconnues (ou désactivées) et toutes les
    lignes en stock insuffisant sont rapportées dans un seul ImportRejeté.
    """
    with uow:
        chantier, numéro = _préparer_import(uow, cmd, "LIV")
        if not chantier.est_actif:
            raise ChantierTerminé(f"Le chantier {chantier.numéro} est terminé")

        inconnues: list[str] = []
        manquantes: list[model.LigneManquante] = []
        à_livrer: list[tuple[model.Stock, int]] = []
        regroupées, _ = _regrouper(cmd.lignes)
        for référence, (quantité, _) in regroupées.items():
            article = uow.catalogue.get_par_référence(référence)
            if article is None or not article.actif:
                inconnues.append(référence)
                continue
            stock = _stock(uow, article.id)
            disponibilité = stock.vérifier_disponibilité(quantité)
            if not disponibilité.disponible:
                manquantes.append(
                    model.LigneManquante(
                        article_id=article.id,
                        demandée=quantité,
                        disponible=disponibilité.quantité_disponible,
                        référence=référence,
                    )
                )
            else:
                à_livrer.append((stock, quantité))

        if inconnues or manquantes:
            logger.warning("Livraison %s refusée : %s %s", numéro, inconnues, manquantes)
            raise ImportRejeté(références_inconnues=inconnues, lignes_manquantes=manquantes)
        if not à_livrer:
            raise ImportRejeté(lignes_invalides=["Aucun élément valide dans la liste"])

        for stock, quantité in à_livrer:
            stock.enregistrer(
                model.Mouvement(
                    article_id=stock.article_id,
                    type=T.SORTIE,
                    quantité=quantité,
                    source="Stock",
                    destination=chantier.nom,
                    chantier_id=chantier.id,
                    liste_id=numéro,
                    notes=f"Livraison {numéro}",
                )
            )
        états = [s.solde.instantané() for s, _ in à_livrer]
        uow.commit()
    logger.info("Livraison %s : %d élément(s) livrés sur %s", numéro, len(états), cmd.chantier_id)
    return états


def importer_retour(
    cmd: commands.ImporterRetour,
    uow: AbstractUnitOfWork,
) -> list[model.ÉtatStock]:
    """
    Enregistre le retour d'une liste : la part en bon état repart en
    stock disponible, la part HS rejoint le matériel HS.
    """
    with uow:
        chantier, numéro = _préparer_import(uow, cmd, "RET")

        inconnues: list[str] = []
        manquantes: list[model.LigneManquante] = []
        regroupées, invalides = _regrouper(cmd.lignes)
        à_retourner: list[tuple[model.Stock, int, int]] = []
        for référence, (quantité, quantité_hs) in regroupées.items():
            article = uow.catalogue.get_par_référence(référence)
            if article is None:
                inconnues.append(référence)
                continue
            if quantité_hs > quantité:
                invalides.append(f"{référence}: {quantité_hs} HS pour {quantité} retourné(s)")
                continue
            stock = _stock(uow, article.id)
            sur_chantier = stock.quantité_sur_chantier(chantier.id)
            if quantité > sur_chantier:
                manquantes.append(
                    model.LigneManquante(
                        article_id=article.id,
                        demandée=quantité,
                        disponible=sur_chantier,
                        référence=référence,
                    )
                )
                continue
            à_retourner.append((stock, quantité, quantité_hs))

        if inconnues or manquantes or invalides:
            logger.warning("Retour %s refusé", numéro)
            raise ImportRejeté(
                références_inconnues=inconnues,
                lignes_manquantes=manquantes,
                lignes_invalides=invalides,
            )
        if not à_retourner:
            raise ImportRejeté(lignes_invalides=["Aucun élément valide dans la liste"])

        for stock, quantité, quantité_hs in à_retourner:
            _rapatrier(
                stock,
                chantier,
                quantité - quantité_hs,
                quantité_hs,
                liste_id=numéro,
                note_retour=f"Retour {numéro}",
                note_hs=f"Éléments HS - Retour {numéro}",
            )
        états = [s.solde.instantané() for s, _, _ in à_retourner]
        uow.commit()
    logger.info("Retour %s : %d référence(s) depuis %s", numéro, len(états), cmd.chantier_id)
    return états


def _rapatrier(
    stock: model.Stock,
    chantier: model.Chantier,
    quantité_bonne: int,
    quantité_hs: int,
    note_retour: str,
    note_hs: str,
    liste_id: Optional[str] = None,
) -> None:
    if quantité_bonne > 0:
        stock.enregistrer(
            model.Mouvement(
                article_id=stock.article_id,
                type=T.RETOUR,
                quantité=quantité_bonne,
                source=chantier.nom,
                destination="Stock",
                chantier_id=chantier.id,
                liste_id=liste_id,
                notes=note_retour,
            )
        )
    if quantité_hs > 0:
        stock.enregistrer(
            model.Mouvement(
                article_id=stock.article_id,
                type=T.HS,
                quantité=quantité_hs,
                source=chantier.nom,
                destination="Matériel HS",
                chantier_id=chantier.id,
                liste_id=liste_id,
                notes=note_hs,
            )
        )


def clôturer_chantier(
    cmd: commands.ClôturerChantier,
    uow: AbstractUnitOfWork,
) -> list[model.ÉtatStock]:
    """
    Rapatrie tout le matériel d'un chantier et le marque terminé.

    Les quantités HS sont validées toutes ensemble avant toute
    écriture ; un échec sur une ligne annule la clôture entière.
    """
    with uow:
        chantier = _chantier(uow, cmd.chantier_id)
        if not chantier.est_actif:
            raise ChantierTerminé(f"Le chantier {chantier.numéro} est déjà terminé")

        stocks = uow.stocks.lister_par_chantier(chantier.id)
        sur_chantier = {s.article_id: s.quantité_sur_chantier(chantier.id) for s in stocks}

        invalides: list[str] = []
        for article_id, quantité_hs in cmd.quantités_hs.items():
            if isinstance(quantité_hs, bool) or not isinstance(quantité_hs, int) or quantité_hs < 0:
                invalides.append(f"{article_id}: quantité HS invalide {quantité_hs!r}")
            elif article_id not in sur_chantier:
                if quantité_hs > 0:
                    invalides.append(f"{article_id}: absent du chantier")
            elif quantité_hs > sur_chantier[article_id]:
                invalides.append(
                    f"{article_id}: {quantité_hs} HS déclaré(s) pour "
                    f"{sur_chantier[article_id]} présent(s)"
                )
        if invalides:
            raise ClôtureInvalide(invalides)

        for stock in stocks:
            quantité_hs = cmd.quantités_hs.get(stock.article_id, 0)
            _rapatrier(
                stock,
                chantier,
                sur_chantier[stock.article_id] - quantité_hs,
                quantité_hs,
                note_retour=f"Clôture chantier {chantier.numéro}",
                note_hs=f"Éléments HS - Clôture {chantier.numéro}",
            )
        chantier.terminer()
        états = [s.solde.instantané() for s in stocks]
        uow.commit()
    return états


# --- Command Handlers : locations Layher ---


def louer_layher(
    cmd: commands.LouerLayher,
    uow: AbstractUnitOfWork,
) -> model.ÉtatLocation:
    """Ouvre une location Layher (statut en_cours)."""
    with uow:
        _article(uow, cmd.article_id, T.LAYHER_LOCATION)
        stock = _stock(uow, cmd.article_id)
        try:
            location = stock.louer(
                numéro_commande=cmd.numéro_commande,
                quantité=cmd.quantité,
                date_location=cmd.date_location,
                date_retour_prévue=cmd.date_retour_prévue,
                coût_location=cmd.coût_location,
                notes=cmd.notes,
            )
        except model.StockInsuffisant as e:
            raise model.StockInsuffisant(_avec_références(uow, e.lignes)) from e
        état = location.instantané()
        uow.commit()
    logger.info("Location Layher %s ouverte (%d)", cmd.numéro_commande, cmd.quantité)
    return état


def retourner_location_layher(
    cmd: commands.RetournerLocationLayher,
    uow: AbstractUnitOfWork,
) -> model.ÉtatLocation:
    """Rend tout ou partie d'une location ; la clôt quand tout est rendu."""
    with uow:
        if cmd.location_id is not None:
            stock = uow.stocks.get_par_location(cmd.location_id)
            location_id = cmd.location_id
        else:
            stock = uow.stocks.get(cmd.article_id) if cmd.article_id else None
            location = stock.location_par_commande(cmd.numéro_commande or "") if stock else None
            location_id = location.id if location else None
        if stock is None or location_id is None:
            raise model.LocationInconnue(
                f"Location inconnue : {cmd.location_id or cmd.numéro_commande}"
            )
        location = stock.retourner_location(location_id, cmd.quantité, cmd.date_retour)
        état = location.instantané()
        uow.commit()
    return état


# --- Event Handlers ---


def publier_mouvement(
    event: events.MouvementEnregistré,
    uow: AbstractUnitOfWork,
) -> None:
    """Publie un mouvement vers l'extérieur (ici : le journal applicatif)."""
    logger.info(
        "Mouvement %s enregistré : %s x%d (chantier: %s)",
        event.type, event.article_id, event.quantité, event.chantier_id,
    )


def envoyer_notification_rupture_stock(
    event: events.RuptureDeStock,
    uow: AbstractUnitOfWork,
    notifications: AbstractNotifications,
    destinataire_alertes: str,
) -> None:
    """Prévient le dépôt quand un article n'a plus aucun élément disponible."""
    with uow:
        article = uow.catalogue.get(event.article_id)
        référence = article.référence if article else event.article_id
    notifications.send(
        destination=destinataire_alertes,
        message=(
            f"Rupture de stock pour la référence {référence}. "
            "Veuillez passer commande chez Layher."
        ),
    )


def signaler_dérive(
    event: events.DériveDétectée,
    uow: AbstractUnitOfWork,
) -> None:
    logger.warning("Dérive de projection corrigée pour l'article %s", event.article_id)


def journaliser_location_retournée(
    event: events.LocationRetournée,
    uow: AbstractUnitOfWork,
) -> None:
    logger.info("Location Layher %s entièrement retournée", event.numéro_commande)


def journaliser_clôture(
    event: events.ChantierClôturé,
    uow: AbstractUnitOfWork,
) -> None:
    logger.info("Chantier %s clôturé : tout le matériel a été retourné", event.numéro)
