#!/usr/bin/env python3
"""
CLI del crawler de comida para perros.

Uso:
    python main.py run                        # Ejecución con límites del .env
    python main.py run --max-products 5       # Limitar productos aceptados
    python main.py run --dry-run              # Sin escribir submissions ni estado

    python main.py init-db                    # Crear tablas
    python main.py state show                 # Ver estado del crawl
    python main.py state reset-source zooplus # Reiniciar una fuente
    python main.py history --limit 20         # Últimas submissions por sesión
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, Mapping, Optional

import database
from config import get_crawler_config
from dogfood_crawler import (
    CrawlOrchestrator,
    CrawlStateStore,
    DeduplicationIndex,
    DryRunSink,
    RunConfig,
    SourceFetcher,
    SourceId,
    SubmissionSink,
)
from dogfood_crawler.exceptions import RunLockedError, StateLoadError, StateSaveError
from dogfood_crawler.fressnapf import FressnapfFetcher
from dogfood_crawler.http_client import Deadline, HttpClient
from dogfood_crawler.opff import OpenPetFoodFactsFetcher
from dogfood_crawler.zooplus import ZooplusFetcher

# Configuración de logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def build_fetchers(
    settings: Dict[str, Any],
    deadline: Optional[Deadline] = None,
) -> Dict[SourceId, SourceFetcher]:
    """
    Crea un fetcher por fuente con los timeouts y reintentos configurados.

    Todos los clientes comparten el deadline de la ejecución.
    """

    def client(headers=None):
        return HttpClient(
            timeout=settings["request_timeout"],
            max_retries=settings["max_retries"],
            headers=headers,
            deadline=deadline,
        )

    return {
        SourceId.OPFF: OpenPetFoodFactsFetcher(
            http_client=client(),
            page_size=settings["opff_page_size"],
        ),
        SourceId.FRESSNAPF: FressnapfFetcher(
            http_client=client(FressnapfFetcher.HEADERS),
            page_size=settings["html_page_size"],
        ),
        SourceId.ZOOPLUS: ZooplusFetcher(
            http_client=client(ZooplusFetcher.HEADERS),
            page_size=settings["html_page_size"],
        ),
    }


def build_run_config(settings: Dict[str, Any]) -> RunConfig:
    return RunConfig(
        max_runtime=settings["max_runtime"],
        safety_margin=settings["safety_margin"],
        max_products=settings["max_products"],
        record_delay=settings["record_delay"],
        checkpoint_every=settings["checkpoint_every"],
        max_consecutive_failures=settings["max_consecutive_failures"],
    )


def log_summary(summary: Mapping[str, Any]) -> None:
    logger.info("")
    logger.info("=" * 50)
    logger.info("RESUMEN")
    logger.info("=" * 50)
    logger.info(f"Sesión: {summary['sessionId']}")
    logger.info(f"Productos enviados: {summary['processed']}")
    logger.info(f"Duplicados: {summary['duplicates']}")
    logger.info(f"Rechazados: {summary['rejected']}")
    logger.info(f"Descartados sin EAN: {summary['dropped']}")
    logger.info(f"Errores: {summary['errors']}")
    logger.info("Por fuente:")
    for source, count in summary["perSourceCounts"].items():
        logger.info(f"  - {source}: {count}")
    if "durationSeconds" in summary:
        logger.info(f"Duración: {summary['durationSeconds']:.1f}s")
    logger.info("=" * 50)


def execute_run(orchestrator: CrawlOrchestrator, store: CrawlStateStore) -> int:
    """
    Ejecuta una sesión con el lease tomado.

    Returns:
        Código de salida: 0 si terminó bien, 1 si hubo un error fatal
        (lease ocupado, estado ilegible o guardado final fallido).
    """
    try:
        store.acquire_lease()
    except RunLockedError as e:
        logger.error(f"No se ejecuta: {e}")
        return 1
    except StateLoadError as e:
        logger.error(f"Error fatal: {e}")
        store.record_error(str(e))
        return 1

    try:
        summary = orchestrator.run()
    except StateLoadError as e:
        logger.error(f"Error fatal: {e}")
        store.record_error(str(e))
        return 1
    except StateSaveError as e:
        # El orquestador ya anotó el error sobre el estado de la sesión
        logger.error(f"Error fatal: {e}")
        return 1
    finally:
        store.release_lease()

    log_summary(summary)
    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 0


def cmd_run(args):
    """Comando: run"""
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    settings = get_crawler_config()
    if args.max_runtime is not None:
        settings["max_runtime"] = args.max_runtime
    if args.max_products is not None:
        settings["max_products"] = args.max_products

    store = CrawlStateStore(database)
    sink = DryRunSink() if args.dry_run else SubmissionSink(database)
    if args.dry_run:
        logger.info("Modo dry-run: no se escriben submissions ni estado")

    deadline = Deadline()
    orchestrator = CrawlOrchestrator(
        fetchers=build_fetchers(settings, deadline),
        state_store=store,
        dedup=DeduplicationIndex(database),
        sink=sink,
        config=build_run_config(settings),
        persist=not args.dry_run,
        deadline=deadline,
    )

    try:
        return execute_run(orchestrator, store)
    finally:
        database.close_connection()


def cmd_init_db(args):
    """Comando: init-db"""
    try:
        return 0 if database.init_database() else 1
    finally:
        database.close_connection()


def cmd_state_show(args):
    """Comando: state show"""
    store = CrawlStateStore(database)
    try:
        state = store.load()
    finally:
        database.close_connection()

    print("\nEstado del crawl:")
    print("=" * 40)
    print(f"  Fuente actual:   {state.current_source.value}")
    for source, cursor in state.per_source_cursor.items():
        last_key = state.last_seen_key.get(source, "-")
        print(f"  {source.value:<16} cursor={cursor} último={last_key}")
    print(f"  Total procesado: {state.total_processed}")
    print(f"  Última ejecución: {state.last_run_at or '-'}")
    print(f"  Último error:    {state.last_error or '-'}")
    return 0


def cmd_state_reset_source(args):
    """Comando: state reset-source"""
    store = CrawlStateStore(database)
    source = SourceId(args.source)
    try:
        store.acquire_lease()
    except RunLockedError as e:
        logger.error(f"No se puede reiniciar mientras hay una ejecución: {e}")
        database.close_connection()
        return 1

    try:
        store.reset_source(source)
    finally:
        store.release_lease()
        database.close_connection()

    print(f"Fuente reiniciada: {source.value}")
    return 0


def cmd_history(args):
    """Comando: history"""
    store = CrawlStateStore(database)
    try:
        sessions = store.history(args.limit)
    finally:
        database.close_connection()

    if not sessions:
        print("No hay submissions registradas")
        return 0

    print(f"\nÚltimas {args.limit} submissions por sesión:")
    print("=" * 60)
    for session in sessions:
        print(f"\nSesión: {session['sessionId']}")
        print(f"  Productos: {session['count']}")
        print(f"  Desde: {session['firstProduct']}  Hasta: {session['lastProduct']}")
        for product in session["products"][:5]:
            print(f"    - {product['ean']} [{product['source']}] {product['name']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Crawler de comida para perros",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Comandos disponibles")

    # Comando: run
    run_parser = subparsers.add_parser("run", help="Ejecutar una sesión de crawl")
    run_parser.add_argument(
        "--max-runtime",
        type=float,
        metavar="S",
        help="Segundos máximos de ejecución (incluye el margen de seguridad)",
    )
    run_parser.add_argument(
        "--max-products",
        type=int,
        metavar="N",
        help="Máximo de productos enviados a moderación",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="No escribir submissions ni guardar el estado",
    )
    run_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Mostrar información detallada",
    )
    run_parser.set_defaults(func=cmd_run)

    # Comando: init-db
    init_parser = subparsers.add_parser("init-db", help="Crear las tablas")
    init_parser.set_defaults(func=cmd_init_db)

    # Comando: state
    state_parser = subparsers.add_parser("state", help="Gestión del estado del crawl")
    state_subparsers = state_parser.add_subparsers(dest="state_command")

    show_parser = state_subparsers.add_parser("show", help="Ver el estado actual")
    show_parser.set_defaults(func=cmd_state_show)

    reset_parser = state_subparsers.add_parser(
        "reset-source", help="Reiniciar el cursor de una fuente"
    )
    reset_parser.add_argument("source", choices=[source.value for source in SourceId])
    reset_parser.set_defaults(func=cmd_state_reset_source)

    # Comando: history
    history_parser = subparsers.add_parser("history", help="Ver submissions recientes")
    history_parser.add_argument(
        "--limit",
        type=int,
        default=10,
        metavar="N",
        help="Número de submissions a revisar",
    )
    history_parser.set_defaults(func=cmd_history)

    return parser


def main():
    """Punto de entrada del CLI."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "state" and not args.state_command:
        parser.parse_args(["state", "--help"])

    try:
        sys.exit(args.func(args))
    except KeyboardInterrupt:
        logger.warning("Proceso interrumpido por el usuario")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
