"""
Point d'entrée Flask.

L'API Flask est un thin adapter : elle se contente de
convertir les requêtes HTTP en commands, les envoie au
message bus, et convertit les résultats en réponses HTTP.

L'API ne contient aucune logique métier. Les erreurs du domaine
sont traduites en codes HTTP par un seul errorhandler.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import date
from typing import Any, Optional

from flask import Flask, jsonify, request

from echafaudage import config
from echafaudage.domain import commands, model
from echafaudage.service_layer import bootstrap, handlers, unit_of_work
from echafaudage.views import views


class RequêteInvalide(model.ErreurStock):
    """Corps de requête incomplet ou mal formé."""

    code = "requete_invalide"


config.configurer_logging()
app = Flask(__name__)
bus = bootstrap.bootstrap()


STATUTS_ERREUR: dict[type[model.ErreurStock], int] = {
    RequêteInvalide: 400,
    model.QuantitéInvalide: 400,
    model.MouvementInvalide: 400,
    handlers.ClôtureInvalide: 400,
    handlers.ArticleInconnu: 404,
    handlers.ChantierInconnu: 404,
    model.LocationInconnue: 404,
    model.StockInsuffisant: 409,
    model.LocationDéjàRetournée: 409,
    handlers.ArticleInactif: 409,
    handlers.ImportRejeté: 409,
    handlers.ListeDéjàImportée: 409,
    handlers.ChantierTerminé: 409,
    handlers.RéférenceDéjàUtilisée: 409,
    handlers.ChantierDéjàExistant: 409,
    unit_of_work.ErreurPersistance: 409,
}


def _ligne_manquante(ligne: model.LigneManquante) -> dict:
    return {
        "article_id": ligne.article_id,
        "reference": ligne.référence,
        "demandee": ligne.demandée,
        "disponible": ligne.disponible,
        "manquante": ligne.manquante,
    }


@app.errorhandler(model.ErreurStock)
def erreur_stock(e: model.ErreurStock):
    corps: dict[str, Any] = {"message": str(e), "code": e.code}
    if isinstance(e, model.StockInsuffisant):
        corps["lignes"] = [_ligne_manquante(l) for l in e.lignes]
    elif isinstance(e, handlers.ImportRejeté):
        corps["lignes"] = [_ligne_manquante(l) for l in e.lignes_manquantes]
        corps["references_inconnues"] = e.références_inconnues
        corps["lignes_invalides"] = e.lignes_invalides
    elif isinstance(e, handlers.ClôtureInvalide):
        corps["lignes"] = e.lignes
    statut = next(
        (s for classe, s in STATUTS_ERREUR.items() if isinstance(e, classe)), 400
    )
    return jsonify(corps), statut


# --- Lecture du corps de requête ---


def _corps() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise RequêteInvalide("Corps JSON attendu")
    return data


def _champ(data: dict, nom: str) -> Any:
    if data.get(nom) in (None, ""):
        raise RequêteInvalide(f"Champ obligatoire manquant : {nom}")
    return data[nom]


def _date(data: dict, nom: str) -> Optional[date]:
    valeur = data.get(nom)
    if valeur is None:
        return None
    try:
        return date.fromisoformat(valeur)
    except (TypeError, ValueError):
        raise RequêteInvalide(f"Date invalide pour {nom} : {valeur!r}") from None


def _lignes_import(data: dict) -> tuple[commands.LigneImport, ...]:
    lignes = data.get("lignes")
    if not isinstance(lignes, list):
        raise RequêteInvalide("Champ obligatoire manquant : lignes")
    if not all(isinstance(ligne, dict) for ligne in lignes):
        raise RequêteInvalide("Chaque ligne doit être un objet JSON")
    return tuple(
        commands.LigneImport(
            référence=ligne.get("reference"),
            quantité=ligne.get("quantite"),
            quantité_hs=ligne.get("quantite_hs") or 0,
        )
        for ligne in lignes
    )


# --- Catalogue ---


@app.route("/catalogue", methods=["POST"])
def créer_article_endpoint():
    """
    POST /catalogue
    Body JSON : { reference, designation, poids_unitaire, categorie?, reference_layher? }
    """
    data = _corps()
    cmd = commands.CréerArticle(
        référence=_champ(data, "reference"),
        désignation=_champ(data, "designation"),
        poids_unitaire=_champ(data, "poids_unitaire"),
        catégorie=data.get("categorie"),
        référence_layher=data.get("reference_layher"),
    )
    article_id = bus.handle(cmd).pop(0)
    return jsonify({"article_id": article_id}), 201


@app.route("/catalogue/<article_id>", methods=["PATCH"])
def modifier_article_endpoint(article_id: str):
    data = _corps()
    bus.handle(
        commands.ModifierArticle(
            article_id=article_id,
            désignation=data.get("designation"),
            poids_unitaire=data.get("poids_unitaire"),
            catégorie=data.get("categorie"),
            référence_layher=data.get("reference_layher"),
        )
    )
    return "OK", 201


@app.route("/catalogue/<article_id>/desactiver", methods=["POST"])
def désactiver_article_endpoint(article_id: str):
    bus.handle(commands.DésactiverArticle(article_id=article_id))
    return "OK", 201


@app.route("/catalogue/<article_id>/reactiver", methods=["POST"])
def réactiver_article_endpoint(article_id: str):
    bus.handle(commands.RéactiverArticle(article_id=article_id))
    return "OK", 201


# --- Registre ---


@app.route("/stock/initialiser", methods=["POST"])
def initialiser_stock_endpoint():
    """
    POST /stock/initialiser
    Body JSON : { lignes: [{ article_id, quantite }] }
    """
    data = _corps()
    lignes = data.get("lignes")
    if not isinstance(lignes, list):
        raise RequêteInvalide("Champ obligatoire manquant : lignes")
    cmd = commands.InitialiserStock(
        lignes=tuple(
            (_champ(ligne, "article_id"), ligne.get("quantite")) for ligne in lignes
        )
    )
    états = bus.handle(cmd).pop(0)
    return jsonify([asdict(é) for é in états]), 201


@app.route("/mouvements", methods=["POST"])
def enregistrer_mouvement_endpoint():
    """
    POST /mouvements
    Body JSON : { article_id, type, quantite, source?, destination?,
                  chantier_id?, liste_id?, numero_commande?, notes? }

    Retourne le solde de l'article après écriture.
    """
    data = _corps()
    cmd = commands.EnregistrerMouvement(
        article_id=_champ(data, "article_id"),
        type=_champ(data, "type"),
        quantité=data.get("quantite"),
        source=data.get("source"),
        destination=data.get("destination"),
        chantier_id=data.get("chantier_id"),
        liste_id=data.get("liste_id"),
        numéro_commande=data.get("numero_commande"),
        notes=data.get("notes"),
    )
    état = bus.handle(cmd).pop(0)
    return jsonify(asdict(état)), 201


@app.route("/mouvements", methods=["GET"])
def mouvements_view_endpoint():
    """GET /mouvements?limite=&article_id=&chantier_id="""
    result = views.mouvements(
        bus.uow.pour_lecture(),
        limite=request.args.get("limite", type=int),
        article_id=request.args.get("article_id"),
        chantier_id=request.args.get("chantier_id"),
    )
    return jsonify(result), 200


@app.route("/stock", methods=["GET"])
def stock_view_endpoint():
    return jsonify(views.stock_global(bus.uow.pour_lecture())), 200


@app.route("/stock/<reference>", methods=["GET"])
def stock_par_référence_view_endpoint(reference: str):
    result = views.stock_par_référence(reference, bus.uow.pour_lecture())
    if result is None:
        return jsonify({"message": f"Référence inconnue : {reference}", "code": "article_inconnu"}), 404
    return jsonify(result), 200


@app.route("/disponibilite/<article_id>", methods=["GET"])
def disponibilité_view_endpoint(article_id: str):
    """
    GET /disponibilite/<article_id>?quantite=n

    Vérification indicative, sans écriture.
    """
    quantité = request.args.get("quantite", type=int)
    if quantité is None:
        raise RequêteInvalide("Paramètre obligatoire manquant : quantite")
    model.vérifier_quantité(quantité)
    résultat = views.disponibilité(article_id, quantité, bus.uow.pour_lecture())
    return jsonify(asdict(résultat)), 200


# --- Matériel HS ---


@app.route("/hs", methods=["GET"])
def éléments_hs_view_endpoint():
    return jsonify(views.éléments_hs(bus.uow.pour_lecture())), 200


@app.route("/hs/<article_id>/reparer", methods=["POST"])
def réparer_endpoint(article_id: str):
    data = _corps()
    état = bus.handle(
        commands.RéparerÉléments(article_id=article_id, quantité=data.get("quantite"))
    ).pop(0)
    return jsonify(asdict(état)), 201


@app.route("/hs/<article_id>/rebut", methods=["POST"])
def rebut_endpoint(article_id: str):
    data = _corps()
    état = bus.handle(
        commands.MettreAuRebut(article_id=article_id, quantité=data.get("quantite"))
    ).pop(0)
    return jsonify(asdict(état)), 201


# --- Chantiers ---


@app.route("/chantiers", methods=["POST"])
def créer_chantier_endpoint():
    """
    POST /chantiers
    Body JSON : { numero, nom, adresse?, date_debut? }
    """
    data = _corps()
    cmd = commands.CréerChantier(
        numéro=_champ(data, "numero"),
        nom=_champ(data, "nom"),
        adresse=data.get("adresse"),
        date_début=_date(data, "date_debut"),
    )
    chantier_id = bus.handle(cmd).pop(0)
    return jsonify({"chantier_id": chantier_id}), 201


@app.route("/chantiers", methods=["GET"])
def chantiers_view_endpoint():
    return jsonify(views.résumé_chantiers(bus.uow.pour_lecture())), 200


@app.route("/chantiers/<chantier_id>/inventaire", methods=["GET"])
def inventaire_view_endpoint(chantier_id: str):
    return jsonify(views.inventaire_chantier(chantier_id, bus.uow.pour_lecture())), 200


@app.route("/chantiers/<chantier_id>/livraisons", methods=["POST"])
def livraison_endpoint(chantier_id: str):
    """
    POST /chantiers/<id>/livraisons
    Body JSON : { numero_liste?, lignes: [{ reference, quantite }] }

    Tout ou rien : la moindre ligne refusée annule la livraison.
    """
    data = _corps()
    cmd = commands.ImporterLivraison(
        chantier_id=chantier_id,
        numéro_liste=data.get("numero_liste") or "",
        lignes=_lignes_import(data),
    )
    états = bus.handle(cmd).pop(0)
    return jsonify([asdict(é) for é in états]), 201


@app.route("/chantiers/<chantier_id>/retours", methods=["POST"])
def retour_endpoint(chantier_id: str):
    """
    POST /chantiers/<id>/retours
    Body JSON : { numero_liste?, lignes: [{ reference, quantite, quantite_hs? }] }
    """
    data = _corps()
    cmd = commands.ImporterRetour(
        chantier_id=chantier_id,
        numéro_liste=data.get("numero_liste") or "",
        lignes=_lignes_import(data),
    )
    états = bus.handle(cmd).pop(0)
    return jsonify([asdict(é) for é in états]), 201


@app.route("/chantiers/<chantier_id>/cloture", methods=["POST"])
def clôture_endpoint(chantier_id: str):
    """
    POST /chantiers/<id>/cloture
    Body JSON : { quantites_hs?: { article_id: n } }
    """
    data = request.get_json(silent=True) or {}
    quantités_hs = data.get("quantites_hs") or {}
    if not isinstance(quantités_hs, dict):
        raise RequêteInvalide("quantites_hs doit être un objet { article_id: quantité }")
    états = bus.handle(
        commands.ClôturerChantier(chantier_id=chantier_id, quantités_hs=quantités_hs)
    ).pop(0)
    return jsonify([asdict(é) for é in états]), 201


# --- Locations Layher ---


@app.route("/layher/locations", methods=["POST"])
def louer_layher_endpoint():
    """
    POST /layher/locations
    Body JSON : { article_id, numero_commande, quantite, date_location?,
                  date_retour_prevue?, cout_location?, notes? }
    """
    data = _corps()
    cmd = commands.LouerLayher(
        article_id=_champ(data, "article_id"),
        numéro_commande=_champ(data, "numero_commande"),
        quantité=data.get("quantite"),
        date_location=_date(data, "date_location"),
        date_retour_prévue=_date(data, "date_retour_prevue"),
        coût_location=data.get("cout_location"),
        notes=data.get("notes"),
    )
    état = bus.handle(cmd).pop(0)
    return jsonify(asdict(état)), 201


@app.route("/layher/locations/<location_id>/retour", methods=["POST"])
def retour_layher_endpoint(location_id: str):
    """
    POST /layher/locations/<id>/retour
    Body JSON : { quantite?, date_retour? } ; sans quantité, tout le reliquat est rendu.
    """
    data = request.get_json(silent=True) or {}
    cmd = commands.RetournerLocationLayher(
        location_id=location_id,
        quantité=data.get("quantite"),
        date_retour=_date(data, "date_retour"),
    )
    état = bus.handle(cmd).pop(0)
    return jsonify(asdict(état)), 201


@app.route("/layher/locations", methods=["GET"])
def locations_view_endpoint():
    return jsonify(views.locations_actives(bus.uow.pour_lecture())), 200


@app.route("/projections/reconstruire", methods=["POST"])
def reconstruire_endpoint():
    """POST /projections/reconstruire  Body JSON : { article_id? }"""
    data = request.get_json(silent=True) or {}
    corrigés = bus.handle(
        commands.ReconstruireProjections(article_id=data.get("article_id"))
    ).pop(0)
    return jsonify({"derives_corrigees": corrigés}), 201
