"""
Message Bus.

Point unique d'entrée des écritures : une command (demande d'action
sur le registre) est confiée à son handler, puis les événements émis
par les agrégats touchés (mouvement enregistré, rupture de stock,
chantier clôturé...) sont traités à leur tour, en cascade.

- Une command a exactement UN handler ; son erreur remonte à l'appelant.
  Un conflit d'écriture (ErreurPersistance) relance la command entière,
  vérification de disponibilité comprise.
- Un event a 0 à N handlers ; leurs erreurs sont journalisées sans
  interrompre le traitement.
"""

from __future__ import annotations

import inspect
import logging
import threading
from typing import Any, Callable, Union

from echafaudage.domain import commands, events
from echafaudage.service_layer import unit_of_work

logger = logging.getLogger(__name__)

Message = Union[commands.Command, events.Event]


class MessageBus:
    """
    Message Bus avec injection de dépendances.

    Les dépendances (uow, notifications, destinataire des alertes...)
    sont fournies à la construction ; chaque handler reçoit celles
    que nomme sa signature.
    """

    def __init__(
        self,
        uow: unit_of_work.AbstractUnitOfWork,
        event_handlers: dict[type[events.Event], list[Callable]],
        command_handlers: dict[type[commands.Command], Callable],
        dependencies: dict[str, Any] | None = None,
        tentatives: int = 1,
    ):
        self.uow = uow
        self.event_handlers = event_handlers
        self.command_handlers = command_handlers
        self.dependencies = {"uow": uow, **(dependencies or {})}
        self.tentatives = max(1, tentatives)
        self.queue: list[Message] = []
        # Une seule command à la fois par processus : la queue est partagée.
        self._verrou = threading.RLock()

    def handle(self, message: Message) -> list[Any]:
        """
        Traite un message puis tous les événements qui en découlent.

        Retourne les résultats des commands traitées, dans l'ordre
        (les handlers d'écriture renvoient les soldes à jour).
        """
        with self._verrou:
            self.queue = [message]
            results: list[Any] = []
            while self.queue:
                suivant = self.queue.pop(0)
                if isinstance(suivant, events.Event):
                    self._handle_event(suivant)
                elif isinstance(suivant, commands.Command):
                    results.append(self._handle_command(suivant))
                else:
                    raise ValueError(f"Message de type inconnu : {type(suivant)}")
            return results

    def _handle_event(self, event: events.Event) -> None:
        for handler in self.event_handlers.get(type(event), []):
            try:
                logger.debug("Event %s -> %s", type(event).__name__, handler.__name__)
                self._call_handler(handler, event)
                self.queue.extend(self.uow.collect_new_events())
            except Exception:
                logger.exception("Échec du handler %s pour %s", handler.__name__, event)

    def _handle_command(self, command: commands.Command) -> Any:
        handler = self.command_handlers.get(type(command))
        if handler is None:
            raise ValueError(f"Aucun handler pour la command {type(command).__name__}")
        for tentative in range(1, self.tentatives + 1):
            logger.debug("Command %s (tentative %d)", type(command).__name__, tentative)
            try:
                result = self._call_handler(handler, command)
            except unit_of_work.ErreurPersistance:
                # Les événements de la tentative annulée ne décrivent rien de réel.
                list(self.uow.collect_new_events())
                if tentative == self.tentatives:
                    raise
                logger.warning(
                    "Conflit d'écriture sur %s, nouvelle tentative (%d/%d)",
                    type(command).__name__, tentative + 1, self.tentatives,
                )
                continue
            self.queue.extend(self.uow.collect_new_events())
            return result

    def _call_handler(self, handler: Callable, message: Message) -> Any:
        """
        Appelle un handler avec le message en premier argument.

        Les paramètres suivants sont résolus par nom dans les dépendances ;
        un paramètre inconnu garde sa valeur par défaut.
        """
        noms = list(inspect.signature(handler).parameters)[1:]
        kwargs = {nom: self.dependencies[nom] for nom in noms if nom in self.dependencies}
        return handler(message, **kwargs)
