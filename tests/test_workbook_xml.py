"""
Unit tests for the workbook connection server rewrite
"""

import os
import sys
import unittest
import xml.etree.ElementTree as Et

# Add parent directory to path to import modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tableau_migrator.workbook_xml import find_connection_elements, rewrite_connection_servers

WORKBOOK = b"""<?xml version='1.0' encoding='utf-8' ?>
<workbook source-build='10.4' xmlns:user='http://www.tableausoftware.com/xml/user'>
  <!-- build 10400.18.0305.1200 -->
  <repository-location server='tableau.src.corp' site='site' />
  <datasources>
    <datasource name='federated.1'>
      <connection class='federated'>
        <named-connections>
          <named-connection name='sqlserver.1'>
            <connection class='sqlserver' server='TABLEAU.SRC.CORP' dbname='sales' />
          </named-connection>
          <named-connection name='oracle.1'>
            <connection class='oracle' server='oracle.corp' />
          </named-connection>
        </named-connections>
      </connection>
    </datasource>
    <datasource name='sqlproxy.1'>
      <connection class='sqlproxy' server='localhost' port='8060' />
    </datasource>
  </datasources>
  <worksheets>
    <worksheet name='Sheet 1' user:ui-builder='x'>
      <connection server='tableau.src.corp' />
    </worksheet>
  </worksheets>
</workbook>
"""


class TestRewriteConnectionServers(unittest.TestCase):

    def setUp(self):
        self.content, self.replaced = rewrite_connection_servers(WORKBOOK, 'tableau.src.corp', 'tableau.dst.corp')
        self.root = Et.fromstring(self.content)

    def test_matching_servers_replaced(self):
        self.assertEqual(self.replaced, 2)
        servers = [c.get('server') for c in find_connection_elements(self.root)]
        self.assertEqual(servers, [None, 'tableau.dst.corp', 'oracle.corp', 'tableau.dst.corp'])

    def test_elements_outside_datasources_untouched(self):
        self.assertEqual(self.root.find('repository-location').get('server'), 'tableau.src.corp')
        self.assertEqual(self.root.find('./worksheets/worksheet/connection').get('server'), 'tableau.src.corp')

    def test_other_attributes_preserved(self):
        named = self.root.find('./datasources/datasource/connection/named-connections/named-connection/connection')
        self.assertEqual(named.get('dbname'), 'sales')
        proxy = self.root.findall('./datasources/datasource')[1].find('connection')
        self.assertEqual(proxy.get('port'), '8060')

    def test_user_namespace_prefix_kept(self):
        self.assertIn(b'user:ui-builder', self.content)
        self.assertNotIn(b'ns0:', self.content)

    def test_comments_kept(self):
        self.assertTrue(self.content.startswith(b"<?xml version='1.0' encoding='utf-8'?>"))
        self.assertIn(b'<!-- build 10400.18.0305.1200 -->', self.content)

    def test_no_extra_sources(self):
        _, replaced = rewrite_connection_servers(WORKBOOK, 'tableau.src.corp', 'tableau.dst.corp', ())
        self.assertEqual(replaced, 1)

    def test_document_without_connections(self):
        content, replaced = rewrite_connection_servers(b'<workbook />', 'a', 'b')
        self.assertEqual(replaced, 0)
        self.assertEqual(Et.fromstring(content).tag, 'workbook')

    def test_malformed_document_raises(self):
        with self.assertRaises(Et.ParseError):
            rewrite_connection_servers(b'<workbook>', 'a', 'b')


if __name__ == '__main__':
    unittest.main()
