#!/usr/bin/env python3
"""
Command-line interface for the Tableau Server migration tool
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from .capabilities import ValidationError
from .client import TableauAPIError, TableauClient
from .common.log_utils import ENV_LOG_LEVEL, configure_logging, log_error, log_fatal, log_info
from .config import ConfigManager, ConfigurationError
from .credentials import CredentialStoreError, VizDatasourceStore
from .migration import MigrationError, MigrationSummary, TableauMigrator
from .notifications import MailNotifier
from .services import SiteServices

# Failures that abort a command with a non-zero exit code
FATAL_ERRORS = (MigrationError, TableauAPIError, CredentialStoreError, ConfigurationError, ValidationError)


class MigrationCLI:
    """Command-line interface for tableau-migrator"""

    def __init__(self):
        self.parser = self._create_parser()
        self.log_path: Optional[Path] = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser with all commands"""
        parser = argparse.ArgumentParser(
            prog='tableau-migrator',
            description='Migrate projects, permissions and workbooks between Tableau Server sites',
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Export the datasource credential report for the operator to fill in
  %(prog)s --config migration.yaml produce-report

  # Download the datasource files the REST API cannot serve
  %(prog)s --config migration.yaml download-datasources

  # Preview a migration without changing the destination
  %(prog)s --config migration.yaml --dry-run migrate
"""
        )

        # Global options
        parser.add_argument(
            '--config',
            help='Path to configuration file (YAML or JSON)'
        )
        parser.add_argument(
            '--env-file',
            default='.env',
            help='Path to .env file with secrets (default: .env)'
        )
        parser.add_argument(
            '--log-level',
            choices=['debug', 'info', 'warning', 'error', 'critical'],
            help=f'Logging level (default: ${ENV_LOG_LEVEL} or info)'
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Perform every lookup but make no changes to the destination'
        )
        parser.add_argument(
            '--verbose', '-v',
            action='store_true',
            help='Enable debug output'
        )

        subparsers = parser.add_subparsers(
            dest='command',
            help='Available commands'
        )
        subparsers.add_parser(
            'migrate',
            help='Migrate the configured projects from the source to the destination site'
        )
        parser_report = subparsers.add_parser(
            'produce-report',
            help='Write the viz datasource credential report (CSV)'
        )
        parser_report.add_argument(
            '--delimiter',
            default=',',
            help='CSV delimiter (default: ,)'
        )
        subparsers.add_parser(
            'download-datasources',
            help='Download viz datasource files through the source site'
        )
        return parser

    def _config_manager(self, args) -> ConfigManager:
        return ConfigManager(config_file=args.config, env_file=args.env_file)

    def cmd_migrate(self, args) -> bool:
        """Run the migration and mail the summary when mail is configured"""
        config_manager = self._config_manager(args)
        config = config_manager.get_migration_config()
        if args.dry_run:
            config.dry_run = True

        summary: Optional[MigrationSummary] = None
        success = False
        try:
            with TableauClient(config.source) as source_client, \
                    TableauClient(config.destination) as destination_client:
                store = VizDatasourceStore(config.viz_datasources, source_client)
                migrator = TableauMigrator(config, SiteServices(source_client),
                                           SiteServices(destination_client), store)
                try:
                    summary = migrator.migrate_projects()
                    success = True
                finally:
                    summary = summary or migrator.summary
        except FATAL_ERRORS as e:
            log_fatal(f"Migration aborted: {e}")

        if summary is not None:
            log_info(summary.to_text())
        self._notify(config.smtp, summary, success)
        return success

    def _notify(self, smtp_config, summary: Optional[MigrationSummary], success: bool):
        if smtp_config is None:
            return
        status = "completed" if success else "failed"
        body = summary.to_text() if summary else "The migration failed before any project was processed."
        attachments = [str(self.log_path)] if self.log_path and self.log_path.exists() else None
        try:
            MailNotifier(smtp_config).send_admin_email(
                f"Tableau migration {status}", body, html=False, attachments=attachments
            )
        except Exception as e:
            log_error("Unable to send migration summary mail", e)

    def cmd_produce_report(self, args) -> bool:
        """Write the credential report from the datasource snapshot"""
        store = VizDatasourceStore(self._config_manager(args).get_viz_datasource_config())
        store.produce_report(args.delimiter)
        return True

    def cmd_download_datasources(self, args) -> bool:
        """Download the datasource files of the snapshot through the source site"""
        config_manager = self._config_manager(args)
        viz_config = config_manager.get_viz_datasource_config()
        with TableauClient(config_manager.get_site_config('source')) as client:
            saved = VizDatasourceStore(viz_config, client).download_viz_datasource_files()
        log_info(f"{len(saved)} datasource files downloaded to {viz_config.datasource_files_path}")
        return True

    def run(self, argv: Optional[List[str]] = None) -> bool:
        """Run the CLI with given arguments"""
        args = self.parser.parse_args(argv)

        if not args.command:
            self.parser.print_help()
            return False

        level_name = 'debug' if args.verbose else args.log_level
        run_name = 'migrate' if args.command == 'migrate' else None
        self.log_path = configure_logging(run_name, level_name)

        command_map = {
            'migrate': self.cmd_migrate,
            'produce-report': self.cmd_produce_report,
            'download-datasources': self.cmd_download_datasources
        }
        handler = command_map.get(args.command)
        try:
            return handler(args)
        except FATAL_ERRORS as e:
            log_fatal(f"Command failed: {e}")
            return False


def main():
    """Main entry point"""
    cli = MigrationCLI()
    success = cli.run()
    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
