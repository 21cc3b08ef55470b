"""
Tests for the project migration orchestrator, run against two in-memory sites
"""

import json
import os
import shutil
import sys
import tempfile
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add parent directory to path to import modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tableau_migrator.capabilities import ResourceType
from tableau_migrator.config import MigrationConfig, SiteConfig, VizDatasourceConfig
from tableau_migrator.credentials import REPORT_HEADER, VizDatasourceStore
from tableau_migrator.migration import MigrationError, TableauMigrator
from tableau_migrator.services import SiteServices
from tests.fakes import FakeTableauClient

SOURCE_HOST = 'src.example.com'
DESTINATION_HOST = 'dst.example.com'

WORKBOOK_XML = f"""<?xml version='1.0' encoding='utf-8' ?>
<workbook>
  <datasources>
    <datasource name='sqlserver.1'>
      <connection class='sqlserver' server='{SOURCE_HOST}' username='dbuser' />
    </datasource>
  </datasources>
</workbook>
""".encode('utf-8')

EMBEDDED_CONNECTION = {'id': 'c1', 'type': 'sqlserver', 'serverAddress': SOURCE_HOST, 'userName': 'dbuser'}


class SalesWorld:
    """Source and destination sites for the 'Sales' project scenario"""

    def __init__(self, root, dry_run=False, destination_group=True, viz_entries=(), report_rows=()):
        self.root = Path(root)
        self.source = FakeTableauClient(SOURCE_HOST)
        self.destination = FakeTableauClient(DESTINATION_HOST, user_id='dest-admin')

        src = self.source
        self.alice = src.add_user('alice', 'CORP')
        self.bob = src.add_user('bob', 'CORP')
        self.analysts = src.add_group('Analysts', [self.alice, self.bob])
        self.sales = src.add_project('Sales', description='Sales reports')
        src.set_permissions(f'projects/{self.sales}/permissions',
                            src.grant('user', self.alice, ('Read', 'Allow')),
                            src.grant('group', self.analysts, ('Write', 'Allow')))
        src.set_permissions(f'projects/{self.sales}/default-permissions/workbooks',
                            src.grant('group', self.analysts, ('Read', 'Allow')))
        self.report_a = src.add_workbook('Report A', self.sales, self.alice, WORKBOOK_XML, [EMBEDDED_CONNECTION])
        self.report_b = src.add_workbook('Report B', self.sales, self.alice, WORKBOOK_XML, [EMBEDDED_CONNECTION])
        self.report_c = src.add_workbook('Report C', self.sales, self.alice, WORKBOOK_XML, [EMBEDDED_CONNECTION])

        dst = self.destination
        self.d_alice = dst.add_user('alice', 'CORP')
        self.d_bob = dst.add_user('bob', 'CORP')
        self.d_analysts = dst.add_group('Analysts', [self.d_alice]) if destination_group else None
        self.d_sales = dst.add_project('Sales')
        self.d_report_a = dst.add_workbook('Report A', self.d_sales, self.d_alice)

        json_path = self.root / 'viz.json'
        json_path.write_text(json.dumps(list(viz_entries)), encoding='utf-8')
        report_path = self.root / 'report.csv'
        lines = [','.join(REPORT_HEADER)] + [','.join(row) for row in report_rows]
        report_path.write_text('\n'.join(lines) + '\n', encoding='utf-8')

        self.config = MigrationConfig(
            source=SiteConfig(f'https://{SOURCE_HOST}', 'admin', 'secret'),
            destination=SiteConfig(f'https://{DESTINATION_HOST}', 'admin', 'secret'),
            viz_datasources=VizDatasourceConfig(
                report_output_path=str(report_path),
                json_source_path=str(json_path),
                datasource_files_path=str(self.root / 'datasources')
            ),
            projects_to_migrate={'Sales': 'Report A|Report B'},
            workbook_download_path=str(self.root / 'workbooks'),
            embedded_connection_credentials={'DBUSER': 'dbsecret'},
            dry_run=dry_run
        )
        self.sleep = Mock()

    def migrator(self):
        store = VizDatasourceStore(self.config.viz_datasources, self.source)
        return TableauMigrator(self.config, SiteServices(self.source), SiteServices(self.destination),
                               store, sleep=self.sleep)

    def workbook_uploads(self):
        return [u for u in self.destination.uploads if u[0].startswith('workbooks')]


class TestSalesScenario:
    """Allow-list 'Report A|Report B' with Report A already at the destination"""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.world = SalesWorld(self.temp_dir)
        self.summary = self.world.migrator().migrate_projects()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_only_report_b_is_published(self):
        uploads = self.world.workbook_uploads()
        assert len(uploads) == 1
        path, metadata, file_bytes = uploads[0]
        assert path == 'workbooks?skipConnectionCheck=true&overwrite=false'
        assert metadata['workbook']['name'] == 'Report B'
        assert metadata['workbook']['project'] == {'id': self.world.d_sales}
        assert file_bytes.part_name == 'tableau_workbook'

    def test_every_workbook_is_downloaded(self):
        workbooks_dir = Path(self.world.config.workbook_download_path)
        for name in ('Report A', 'Report B', 'Report C'):
            assert (workbooks_dir / f'{name}.twb').exists()
        assert self.summary.workbooks_downloaded == 3

    def test_published_content_points_at_destination(self):
        _, _, file_bytes = self.world.workbook_uploads()[0]
        assert DESTINATION_HOST.encode() in file_bytes.content
        assert SOURCE_HOST.encode() not in file_bytes.content

    def test_audit_copy_written_for_published_workbook_only(self):
        workbooks_dir = Path(self.world.config.workbook_download_path)
        audit_copy = workbooks_dir / 'Report B_publish.twb'
        assert audit_copy.exists()
        assert DESTINATION_HOST.encode() in audit_copy.read_bytes()
        assert not (workbooks_dir / 'Report A_publish.twb').exists()
        assert not (workbooks_dir / 'Report C_publish.twb').exists()

    def test_embedded_connection_gets_configured_password(self):
        _, metadata, _ = self.world.workbook_uploads()[0]
        connection = metadata['workbook']['connections']['connection'][0]
        assert connection['connectionCredentials'] == {'name': 'dbuser', 'password': 'dbsecret', 'embed': True}

    def test_owner_is_reassigned_to_matching_destination_user(self):
        published = [w for w in self.world.destination.workbooks.values() if w['name'] == 'Report B']
        assert len(published) == 1
        assert published[0]['owner'] == {'id': self.world.d_alice}

    def test_permissions_replicated_on_destination_project(self):
        dst = self.world.destination
        assert dst.calls.count(('PUT', f'projects/{self.world.d_sales}/permissions')) == 2
        assert dst.calls.count(('PUT', f'projects/{self.world.d_sales}/default-permissions/workbooks')) == 1
        stored = dst.permissions[f'projects/{self.world.d_sales}/permissions']['granteeCapabilities']
        assert {'user': {'id': self.world.d_alice},
                'capabilities': {'capability': [{'name': 'Read', 'mode': 'Allow'}]}} in stored
        assert {'group': {'id': self.world.d_analysts},
                'capabilities': {'capability': [{'name': 'Write', 'mode': 'Allow'}]}} in stored

    def test_summary_counts(self):
        assert self.summary.projects_migrated == 1
        assert self.summary.workbooks_published == 1
        assert self.summary.workbooks_skipped == 2
        assert self.summary.workbooks_failed == 0
        assert self.summary.users_created == 0
        assert self.summary.failures == []

    def test_source_site_is_never_modified(self):
        assert self.world.source.mutations == []


class TestGroupReconciliation:
    """Group membership sync only ever adds members"""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_membership_sync_is_additive(self):
        world = SalesWorld(self.temp_dir)
        extra = world.destination.add_user('carol', 'CORP')
        world.destination.members[world.d_analysts].append(extra)

        migrator = world.migrator()
        migrator.migrate_project_groups(migrator.source.projects.find_project('Sales'))

        assert world.destination.members[world.d_analysts] == [world.d_alice, extra, world.d_bob]
        assert world.destination.requests('POST') == [('POST', f'groups/{world.d_analysts}/users')]
        assert world.destination.requests('DELETE') == []

    def test_missing_group_is_created_then_filled(self):
        world = SalesWorld(self.temp_dir, destination_group=False)
        migrator = world.migrator()
        migrator.migrate_project_groups(migrator.source.projects.find_project('Sales'))

        created = [g for g in world.destination.groups.values() if g['name'] == 'Analysts']
        assert len(created) == 1
        assert world.destination.members[created[0]['id']] == [world.d_alice, world.d_bob]
        world.sleep.assert_called_with(1)
        assert migrator.summary.groups_created == 1

    def test_unresolved_member_is_skipped(self):
        world = SalesWorld(self.temp_dir)
        del world.destination.users[world.d_bob]
        migrator = world.migrator()
        migrator.migrate_project_groups(migrator.source.projects.find_project('Sales'))

        assert world.destination.members[world.d_analysts] == [world.d_alice]
        assert world.destination.mutations == []

    def test_failed_member_add_does_not_stop_the_run(self):
        world = SalesWorld(self.temp_dir)
        world.destination.fail.add(('POST', f'groups/{world.d_analysts}/users'))
        summary = world.migrator().migrate_projects()

        assert world.destination.members[world.d_analysts] == [world.d_alice]
        assert summary.members_added == 0
        assert len(summary.failures) == 1
        assert 'bob' in summary.failures[0]
        assert [u[1]['workbook']['name'] for u in world.workbook_uploads()] == ['Report B']



class TestUserReconciliation:

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_missing_users_created_with_down_level_logon_name(self):
        world = SalesWorld(self.temp_dir)
        del world.destination.users[world.d_bob]
        world.source.users[world.bob]['siteRole'] = 'Viewer'
        migrator = world.migrator()
        migrator.migrate_project_users(migrator.source.projects.find_project('Sales'))

        created = [u for u in world.destination.users.values() if u['name'] == 'bob']
        assert len(created) == 1
        assert created[0]['domain'] == {'name': 'CORP'}
        assert created[0]['siteRole'] == 'Viewer'
        assert migrator.summary.users_created == 1
        world.sleep.assert_called_once_with(1)

    def test_user_creation_failure_does_not_stop_the_loop(self):
        world = SalesWorld(self.temp_dir)
        del world.destination.users[world.d_alice]
        del world.destination.users[world.d_bob]
        world.destination.fail.add(('POST', 'users'))
        migrator = world.migrator()
        migrator.migrate_project_users(migrator.source.projects.find_project('Sales'))

        assert world.destination.calls.count(('POST', 'users')) == 2
        assert migrator.summary.users_created == 0
        assert len(migrator.summary.failures) == 2

    def test_no_settle_delay_without_user_creation(self):
        world = SalesWorld(self.temp_dir)
        migrator = world.migrator()
        migrator.migrate_project_users(migrator.source.projects.find_project('Sales'))

        assert migrator.summary.users_created == 0
        world.sleep.assert_not_called()

    def test_no_settle_delay_under_dry_run(self):
        world = SalesWorld(self.temp_dir, dry_run=True)
        del world.destination.users[world.d_bob]
        migrator = world.migrator()
        migrator.migrate_project_users(migrator.source.projects.find_project('Sales'))

        assert migrator.summary.users_created == 1
        world.sleep.assert_not_called()



class TestFatalGroupResolution:

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_missing_destination_group_aborts_the_run(self):
        world = SalesWorld(self.temp_dir, destination_group=False)
        world.destination.fail.add(('POST', 'groups'))

        with pytest.raises(MigrationError, match='Analysts'):
            world.migrator().migrate_projects()

        # only the user grant that precedes the group is applied
        assert world.destination.requests('PUT') == [('PUT', f'projects/{world.d_sales}/permissions')]
        assert world.workbook_uploads() == []

    def test_missing_group_in_default_permissions_is_fatal(self):
        world = SalesWorld(self.temp_dir, destination_group=False)
        migrator = world.migrator()
        source_project = migrator.source.projects.find_project('Sales')
        destination_project = migrator.destination.projects.find_project('Sales')

        with pytest.raises(MigrationError):
            migrator.migrate_project_default_permissions(source_project, destination_project,
                                                         ResourceType.WORKBOOK)

    def test_unresolved_user_grantee_is_skipped(self):
        world = SalesWorld(self.temp_dir)
        del world.destination.users[world.d_alice]
        migrator = world.migrator()
        migrator.migrate_project_permissions(migrator.source.projects.find_project('Sales'),
                                             migrator.destination.projects.find_project('Sales'))

        assert world.destination.requests('PUT') == [('PUT', f'projects/{world.d_sales}/permissions')]


class TestDryRun:
    """Dry run reads exactly what a live run reads and writes nothing"""

    def setup_method(self):
        self.live_dir = tempfile.mkdtemp()
        self.dry_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.live_dir)
        shutil.rmtree(self.dry_dir)

    def test_no_mutations_and_identical_reads(self):
        live = SalesWorld(self.live_dir)
        dry = SalesWorld(self.dry_dir, dry_run=True)

        live.migrator().migrate_projects()
        dry_summary = dry.migrator().migrate_projects()

        assert live.destination.mutations != []
        assert dry.destination.mutations == []
        assert dry.source.mutations == []
        assert dry.destination.reads == live.destination.reads
        assert dry.source.reads == live.source.reads
        assert dry_summary.dry_run
        assert dry_summary.workbooks_published == 1

    def test_dry_run_still_downloads_and_stages(self):
        dry = SalesWorld(self.dry_dir, dry_run=True)
        dry.migrator().migrate_projects()

        workbooks_dir = Path(dry.config.workbook_download_path)
        assert (workbooks_dir / 'Report C.twb').exists()
        assert (workbooks_dir / 'Report B_publish.twb').exists()

    def test_dry_run_previews_new_project(self):
        dry = SalesWorld(self.dry_dir, dry_run=True)
        del dry.destination.projects[dry.d_sales]
        del dry.destination.workbooks[dry.d_report_a]

        summary = dry.migrator().migrate_projects()

        assert dry.destination.mutations == []
        assert summary.workbooks_published == 2


class TestWorkbookSelection:

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_wildcard_and_skip_list(self):
        world = SalesWorld(self.temp_dir)
        world.config.projects_to_migrate['Sales'] = '*'
        world.config.workbooks_to_skip = [' report c ']
        world.migrator().migrate_projects()

        names = [u[1]['workbook']['name'] for u in world.workbook_uploads()]
        assert names == ['Report B']

    def test_missing_source_project_is_skipped(self):
        world = SalesWorld(self.temp_dir)
        world.config.projects_to_migrate['Marketing'] = '*'
        summary = world.migrator().migrate_projects()

        assert summary.projects_skipped == 1
        assert summary.projects_migrated == 1

    def test_workbook_in_other_destination_project_is_published(self):
        world = SalesWorld(self.temp_dir)
        other = world.destination.add_project('Archive')
        world.destination.workbooks[world.d_report_a]['project'] = {'id': other}
        world.migrator().migrate_projects()

        names = sorted(u[1]['workbook']['name'] for u in world.workbook_uploads())
        assert names == ['Report A', 'Report B']

    def test_same_name_in_several_destination_projects(self):
        world = SalesWorld(self.temp_dir)
        other = world.destination.add_project('Archive')
        world.destination.add_workbook('Report A', other, world.d_alice)
        summary = world.migrator().migrate_projects()

        names = [u[1]['workbook']['name'] for u in world.workbook_uploads()]
        assert names == ['Report B']
        assert summary.workbooks_skipped == 2
        assert summary.projects_migrated == 1

    def test_failed_existing_check_skips_only_that_workbook(self):
        world = SalesWorld(self.temp_dir)
        world.destination.fail.add(('GET', 'workbooks'))
        summary = world.migrator().migrate_projects()

        assert world.workbook_uploads() == []
        assert summary.workbooks_failed == 2
        assert len(summary.failures) == 2
        assert summary.projects_migrated == 1



class TestWorkbookOwner:

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_default_owner_used_when_source_owner_missing(self):
        world = SalesWorld(self.temp_dir)
        dave = world.source.add_user('dave', 'CORP')
        world.source.workbooks[world.report_b]['owner'] = {'id': dave}
        carol = world.destination.add_user('carol', 'CORP')
        world.config.default_owner_username = 'CORP\\carol'
        world.migrator().migrate_projects()

        published = [w for w in world.destination.workbooks.values() if w['name'] == 'Report B']
        assert published[0]['owner'] == {'id': carol}

    def test_unresolved_owner_skips_only_that_workbook(self):
        world = SalesWorld(self.temp_dir)
        world.config.projects_to_migrate['Sales'] = '*'
        dave = world.source.add_user('dave', 'CORP')
        world.source.workbooks[world.report_b]['owner'] = {'id': dave}
        summary = world.migrator().migrate_projects()

        names = [u[1]['workbook']['name'] for u in world.workbook_uploads()]
        assert names == ['Report C']
        assert summary.workbooks_failed == 1


class TestPublishedDatasourceConnections:
    """Workbooks connected to published datasources"""

    VIZ_ENTRY = {
        'name': 'Sales Data',
        'downloadUrl': '/t/site/datasources/SalesData.tds',
        'connectionDetails': {'serverName': 'db.corp', 'serverPort': '1433', 'databaseUsername': 'svc',
                              'hasEmbeddedPassword': True, 'type': 'sqlserver'}
    }

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.world = SalesWorld(self.temp_dir, viz_entries=[self.VIZ_ENTRY],
                                report_rows=[('Sales Data', 'db.corp', '1433', 'True', 'svc', 'svcpass')])
        src = self.world.source
        self.source_datasource = src.add_datasource('Sales Data', self.world.sales,
                                                    [{'id': 'dc1', 'serverAddress': 'db.corp', 'userName': 'svc'}])
        self.proxy = {'id': 'c2', 'type': 'sqlproxy', 'serverAddress': SOURCE_HOST,
                      'datasource': {'id': self.source_datasource, 'name': 'Sales Data'}}
        src.workbook_connections[self.world.report_b] = [dict(self.proxy)]
        files_dir = Path(self.world.config.viz_datasources.datasource_files_path) / 'nested'
        files_dir.mkdir(parents=True)
        (files_dir / 'Sales Data.tds').write_bytes(b'<datasource />')

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_missing_datasource_is_published_first(self):
        self.world.migrator().migrate_projects()

        uploads = self.world.destination.uploads
        assert [u[0] for u in uploads] == ['datasources?overwrite=false',
                                           'workbooks?skipConnectionCheck=true&overwrite=false']
        datasource_request = uploads[0][1]['datasource']
        assert datasource_request['connectionCredentials'] == {'name': 'svc', 'password': 'svcpass', 'embed': True}
        assert datasource_request['project'] == {'id': self.world.d_sales}
        assert uploads[0][2].part_name == 'tableau_datasource'

        published_id = next(d for d in self.world.destination.datasources.values())['id']
        connection = uploads[1][1]['workbook']['connections']['connection'][0]
        assert connection['datasource'] == {'id': published_id, 'name': 'Sales Data'}
        assert connection['serverAddress'] == DESTINATION_HOST
        self.world.sleep.assert_any_call(1)

    def test_existing_datasource_is_reused(self):
        existing = self.world.destination.add_datasource(
            'Sales Data', self.world.d_sales, [{'id': 'dc9', 'serverAddress': 'db.corp', 'userName': 'svc'}]
        )
        summary = self.world.migrator().migrate_projects()

        assert [u[0] for u in self.world.destination.uploads] == [
            'workbooks?skipConnectionCheck=true&overwrite=false']
        connection = self.world.workbook_uploads()[0][1]['workbook']['connections']['connection'][0]
        assert connection['datasource']['id'] == existing
        assert summary.datasources_published == 0

    def test_datasource_in_destination_project_is_reused_among_namesakes(self):
        archive = self.world.destination.add_project('Archive')
        self.world.destination.add_datasource('Sales Data', archive)
        existing = self.world.destination.add_datasource(
            'Sales Data', self.world.d_sales, [{'id': 'dc9', 'serverAddress': 'db.corp', 'userName': 'svc'}]
        )
        summary = self.world.migrator().migrate_projects()

        connection = self.world.workbook_uploads()[0][1]['workbook']['connections']['connection'][0]
        assert connection['datasource']['id'] == existing
        assert summary.workbooks_published == 1
        assert summary.datasources_published == 0


    def test_unexpected_proxy_server_fails_the_workbook(self):
        self.world.source.workbook_connections[self.world.report_b][0]['serverAddress'] = 'other.example.com'
        summary = self.world.migrator().migrate_projects()

        assert self.world.destination.uploads == []
        assert summary.workbooks_failed == 1
        assert 'other.example.com' in summary.failures[0]

    def test_missing_datasource_file_fails_the_workbook(self):
        shutil.rmtree(self.world.config.viz_datasources.datasource_files_path)
        summary = self.world.migrator().migrate_projects()

        assert self.world.destination.uploads == []
        assert summary.workbooks_failed == 1


class TestMigratorLifecycle:

    def test_close_signs_out_of_both_sites(self):
        temp_dir = tempfile.mkdtemp()
        try:
            world = SalesWorld(temp_dir)
            with world.migrator():
                pass
            assert not world.source.is_signed_in
            assert not world.destination.is_signed_in
        finally:
            shutil.rmtree(temp_dir)
