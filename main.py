import argparse
import asyncio
import sys

from Config.config_manager import CentralConfig as Config
from Shared_Utils.logging_manager import LoggerManager
from Shared_Utils.precision import PrecisionUtils
from database_manager.database_session_manager import DatabaseSessionManager
from database_manager.ledger_store import SqlAlchemyLedgerStore
from fifo_engine import AllocationEngine, ReconciliationService, RecoveryMode, RunScope

RECOVERY_MODES = {
    'full': RecoveryMode.FULL_RERUN,
    'manual': RecoveryMode.MANUAL_CLEANUP,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="FIFO fuel allocation and ledger reconciliation.")
    parser.add_argument('--database-url', default=None, help="Override DATABASE_URL")
    parser.add_argument('--verbose', action='store_true', help="Show DEBUG output on the console")

    commands = parser.add_subparsers(dest='command', required=True)
    commands.add_parser('allocate', help="Allocate unallocated consumption to purchase lots")
    commands.add_parser('report', help="List ledger inconsistencies")
    recover = commands.add_parser('recover', help="Repair the ledger")
    recover.add_argument('--mode', choices=sorted(RECOVERY_MODES), required=True)
    commands.add_parser('verify', help="Compare purchase, consumption and allocation totals")
    summary = commands.add_parser('summary', help="Allocated USD value per month")
    summary.add_argument('--month', default=None, help="List allocations for one YYYY-MM month")
    return parser


def print_lines(title, lines):
    print(title)
    for line in lines:
        print(f"  {line}")


async def run_command(args, engine: AllocationEngine, reconciliation: ReconciliationService) -> int:
    if args.command == 'allocate':
        result = await engine.run(RunScope.UNALLOCATED)
        print_lines(result.message, result.details)
        return 0 if result.success else 1

    if args.command == 'report':
        report = await reconciliation.get_inconsistency_report()
        print_lines(f"{len(report)} finding(s)", report.lines())
        return 0 if report.is_consistent else 1

    if args.command == 'recover':
        result = await reconciliation.recover(RECOVERY_MODES[args.mode])
        print_lines(result.message, result.details)
        return 0 if result.success else 1

    if args.command == 'verify':
        verification = await reconciliation.verify_balances()
        print_lines(str(verification), verification.notes)
        return 0 if verification.is_balanced else 1

    if args.command == 'summary':
        if args.month:
            allocations = await engine.allocations_for_month(args.month)
            if allocations.error:
                print(allocations.error)
                return 1
            print_lines(f"{len(allocations)} allocation(s) in {args.month}", [str(a) for a in allocations])
        else:
            summary = await engine.monthly_value_summary()
            if summary.error:
                print(summary.error)
                return 1
            print_lines("Allocated value by month", [f"{m}: ${v:,.2f}" for m, v in summary.items()])
        return 0

    raise ValueError(f"Unknown command: {args.command}")


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config = Config()

    logger_manager = LoggerManager({
        'log_level': 'DEBUG' if args.verbose else config.log_level,
        'log_dir': config.log_dir,
    })
    shared_logger = logger_manager.get_logger('shared_logger')

    precision_utils = PrecisionUtils.get_instance(logger_manager).configure(
        shortfall_tolerance=config.shortfall_tolerance,
        remaining_tolerance=config.remaining_tolerance,
    )

    database_session_manager = DatabaseSessionManager(
        args.database_url or config.database_url,
        logger=shared_logger,
        **config.engine_options(),
    )
    store = SqlAlchemyLedgerStore(database_session_manager)
    engine = AllocationEngine(store, logger_manager, precision_utils)
    reconciliation = ReconciliationService(store, logger_manager, engine)

    try:
        try:
            await database_session_manager.initialize()
        except Exception as e:
            shared_logger.error(f"❌ Cannot connect to the ledger database: {e}", exc_info=True)
            print(f"Cannot connect to the ledger database: {e}")
            return 1
        return await run_command(args, engine, reconciliation)
    finally:
        await database_session_manager.disconnect()


def cli():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
