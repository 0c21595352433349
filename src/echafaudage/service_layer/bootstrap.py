"""
Bootstrap : assemblage de l'application (Composition Root).

Ce module construit le message bus avec toutes ses dépendances.
C'est ici que l'injection de dépendances est réalisée :
on assemble les composants concrets (ou les fakes pour les tests).

C'est le seul endroit de l'application qui connaît les
implémentations concrètes de chaque abstraction.
"""

from __future__ import annotations

from typing import Any

from echafaudage import config
from echafaudage.adapters import notifications, orm
from echafaudage.domain import commands, events
from echafaudage.service_layer import handlers, messagebus, unit_of_work


def bootstrap(
    start_orm: bool = True,
    uow: unit_of_work.AbstractUnitOfWork | None = None,
    notifications_adapter: notifications.AbstractNotifications | None = None,
    paramètres: config.Paramètres | None = None,
    **extra_dependencies: Any,
) -> messagebus.MessageBus:
    """
    Construit et retourne un MessageBus configuré.

    En production, utilise les implémentations concrètes et crée
    les tables manquantes. En test, on injecte des fakes via les paramètres.
    """
    paramètres = paramètres or config.get_paramètres()

    if start_orm:
        orm.start_mappers()

    if uow is None:
        orm.metadata.create_all(unit_of_work.DEFAULT_ENGINE)
        uow = unit_of_work.SqlAlchemyUnitOfWork()

    if notifications_adapter is None:
        notifications_adapter = notifications.EmailNotifications(
            smtp_host=paramètres.smtp_hote,
            smtp_port=paramètres.smtp_port,
            expéditeur=paramètres.expediteur_alertes,
        )

    dependencies: dict[str, Any] = {
        "notifications": notifications_adapter,
        "destinataire_alertes": paramètres.destinataire_alertes,
        **extra_dependencies,
    }

    return messagebus.MessageBus(
        uow=uow,
        event_handlers=EVENT_HANDLERS,
        command_handlers=COMMAND_HANDLERS,
        dependencies=dependencies,
        tentatives=paramètres.tentatives_conflit,
    )


# --- Routage des messages vers les handlers ---

EVENT_HANDLERS: dict[type[events.Event], list] = {
    events.MouvementEnregistré: [handlers.publier_mouvement],
    events.RuptureDeStock: [handlers.envoyer_notification_rupture_stock],
    events.DériveDétectée: [handlers.signaler_dérive],
    events.LocationRetournée: [handlers.journaliser_location_retournée],
    events.ChantierClôturé: [handlers.journaliser_clôture],
}

COMMAND_HANDLERS: dict[type[commands.Command], Any] = {
    commands.CréerArticle: handlers.créer_article,
    commands.ModifierArticle: handlers.modifier_article,
    commands.DésactiverArticle: handlers.désactiver_article,
    commands.RéactiverArticle: handlers.réactiver_article,
    commands.InitialiserStock: handlers.initialiser_stock,
    commands.EnregistrerMouvement: handlers.enregistrer_mouvement,
    commands.RéparerÉléments: handlers.réparer_éléments,
    commands.MettreAuRebut: handlers.mettre_au_rebut,
    commands.ReconstruireProjections: handlers.reconstruire_projections,
    commands.CréerChantier: handlers.créer_chantier,
    commands.ImporterLivraison: handlers.importer_livraison,
    commands.ImporterRetour: handlers.importer_retour,
    commands.ClôturerChantier: handlers.clôturer_chantier,
    commands.LouerLayher: handlers.louer_layher,
    commands.RetournerLocationLayher: handlers.retourner_location_layher,
}
