import tempfile
import textwrap
import unittest
from pathlib import Path

from collectors.bandwidth import BandwidthCollector
from collectors.conntrack import parse_table
from identity.directory import IdentityDirectory
from publish.exposition import iter_samples, render_families

DHCP = textwrap.dedent("""\
    config dnsmasq
        option domainneeded '1'

    config host
        option name 'swathi-dell'
        option ip '192.168.1.21'
        option tag 'swathi work windows'

    config host
        option name 'nas'
        option ip '192.168.1.10'
        option tag 'family storage linux'

    config host
        option name 'tv'
        option ip '192.168.1.15'
        option tag 'family media'
""")

SCENARIO_A = (
    "src=192.168.1.21 dst=93.184.216.34 sport=40000 dport=443 bytes=1000 "
    "src=93.184.216.34 dst=192.168.29.2 sport=443 dport=40000 bytes=2000"
)

SCENARIO_B = (
    "src=192.168.1.10 dst=192.168.1.15 sport=445 dport=51000 bytes=1048576 "
    "src=192.168.1.15 dst=192.168.1.10 sport=51000 dport=445 bytes=1048576"
)


class BandwidthTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        (self.root / "dhcp").write_text(DHCP)
        self.conntrack = self.root / "nf_conntrack"

        self.directory = IdentityDirectory(str(self.root / "dhcp"))
        self.directory.build()
        self.collector = BandwidthCollector(self.directory, conntrack_path=str(self.conntrack))

    def tearDown(self):
        self.tmp.cleanup()

    def attribute(self, *lines):
        return self.collector.attribute(parse_table(lines))


class TestClassification(BandwidthTestCase):
    def test_is_local(self):
        self.assertTrue(self.collector.is_local("192.168.1.21"))
        self.assertFalse(self.collector.is_local("192.168.29.2"))
        self.assertFalse(self.collector.is_local("93.184.216.34"))
        self.assertFalse(self.collector.is_local("127.0.0.1"))
        self.assertFalse(self.collector.is_local("0.0.0.0"))
        self.assertFalse(self.collector.is_local("fe80::1"))

    def test_nat_return_only_touches_aggregates(self):
        counters = self.attribute(SCENARIO_A)

        self.assertEqual(dict(counters.tx), {"192.168.1.21": 1000})
        self.assertEqual(dict(counters.rx), {"192.168.1.21": 2000})
        self.assertEqual(dict(counters.local_tx), {})
        self.assertEqual(dict(counters.local_rx), {})

    def test_port_mismatch_is_not_nat_return(self):
        counters = self.attribute(
            "src=192.168.1.21 dst=93.184.216.34 sport=40000 dport=443 bytes=1000 "
            "src=93.184.216.34 dst=192.168.29.2 sport=443 dport=61000 bytes=2000"
        )
        # Only the original tuple has a local endpoint
        self.assertEqual(dict(counters.tx), {"192.168.1.21": 1000})
        self.assertEqual(dict(counters.rx), {})

    def test_second_wan_address_is_recognised(self):
        counters = self.attribute(
            "src=192.168.1.21 dst=1.1.1.1 sport=5000 dport=53 bytes=60 "
            "src=1.1.1.1 dst=192.168.0.2 sport=53 dport=5000 bytes=120"
        )
        self.assertEqual(counters.rx["192.168.1.21"], 120)

    def test_local_traffic_populates_pairs(self):
        counters = self.attribute(SCENARIO_B)

        self.assertEqual(counters.tx["192.168.1.10"], 1048576)
        self.assertEqual(counters.tx["192.168.1.15"], 1048576)
        self.assertEqual(counters.rx["192.168.1.10"], 1048576)
        self.assertEqual(counters.rx["192.168.1.15"], 1048576)
        self.assertEqual(counters.local_tx[("192.168.1.10", "192.168.1.15")], 1048576)
        self.assertEqual(counters.local_tx[("192.168.1.15", "192.168.1.10")], 1048576)

    def test_local_tx_and_mirrored_rx_match(self):
        counters = self.attribute(
            "src=192.168.1.10 dst=192.168.1.15 sport=1 dport=2 bytes=300 "
            "src=192.168.1.15 dst=192.168.1.10 sport=2 dport=1 bytes=50"
        )
        self.assertEqual(
            counters.local_tx[("192.168.1.10", "192.168.1.15")],
            counters.local_rx[("192.168.1.15", "192.168.1.10")],
        )
        self.assertEqual(counters.local_rx[("192.168.1.15", "192.168.1.10")], 300)
        self.assertEqual(counters.local_rx[("192.168.1.10", "192.168.1.15")], 50)

    def test_pair_keys_are_always_local(self):
        counters = self.attribute(SCENARIO_A, SCENARIO_B, "src=192.168.1.21 dst=8.8.8.8 sport=1 dport=53 bytes=10")
        for a, b in list(counters.local_tx) + list(counters.local_rx):
            self.assertTrue(self.collector.is_local(a))
            self.assertTrue(self.collector.is_local(b))
        for ip in list(counters.tx) + list(counters.rx):
            self.assertTrue(self.collector.is_local(ip))

    def test_repeated_observations_are_summed(self):
        counters = self.attribute(SCENARIO_A, SCENARIO_A)
        self.assertEqual(counters.tx["192.168.1.21"], 2000)
        self.assertEqual(counters.rx["192.168.1.21"], 4000)


SWATHI = {"ip": "192.168.1.21", "hostname": "swathi-dell", "user": "swathi", "cat": "work", "os": "windows"}


class TestRendering(BandwidthTestCase):
    def render_samples(self, counters):
        text = render_families(self.collector.render(counters))
        return [(s.name, s.labels, s.value) for s in iter_samples(text)]

    def test_scenario_a_output(self):
        samples = self.render_samples(self.attribute(SCENARIO_A))

        self.assertEqual(samples, [
            ("simon_tx_bytes_total", SWATHI, 1000),
            ("simon_rx_bytes_total", SWATHI, 2000),
        ])

    def test_scenario_b_output(self):
        samples = self.render_samples(self.attribute(SCENARIO_B))

        self.assertIn(
            ("simon_local_tx_bytes_total",
             {"ip": "192.168.1.10", "hostname": "nas", "user": "family", "cat": "storage", "os": "linux",
              "dst_ip": "192.168.1.15", "dst_hostname": "tv"},
             1048576),
            samples,
        )
        self.assertIn(
            ("simon_local_rx_bytes_total",
             {"ip": "192.168.1.15", "hostname": "tv", "user": "family", "cat": "media", "os": "unknown",
              "src_ip": "192.168.1.10", "src_hostname": "nas"},
             1048576),
            samples,
        )
        names = [name for name, _, _ in samples]
        self.assertEqual(names.count("simon_tx_bytes_total"), 2)
        self.assertEqual(names.count("simon_rx_bytes_total"), 2)

    def test_devices_are_sorted_by_address(self):
        samples = self.render_samples(self.attribute(SCENARIO_B))
        tx_ips = [labels["ip"] for name, labels, _ in samples if name == "simon_tx_bytes_total"]
        self.assertEqual(tx_ips, ["192.168.1.10", "192.168.1.15"])

    def test_unknown_device_gets_unknown_labels(self):
        samples = self.render_samples(self.attribute("src=192.168.1.99 dst=9.9.9.9 sport=1 dport=2 bytes=5"))
        self.assertEqual(samples, [
            ("simon_tx_bytes_total",
             {"ip": "192.168.1.99", "hostname": "unknown", "user": "unknown", "cat": "unknown", "os": "unknown"},
             5),
        ])

    def test_render_is_idempotent(self):
        counters = self.attribute(SCENARIO_A, SCENARIO_B)
        first = render_families(self.collector.render(counters))
        second = render_families(self.collector.render(counters))
        self.assertEqual(first, second)


class TestCollect(BandwidthTestCase):
    def test_missing_table_is_a_no_op(self):
        counters = self.collector.collect()
        self.assertFalse(counters)
        self.assertEqual(self.collector.render(counters), [])

    def test_empty_table_is_a_no_op(self):
        self.conntrack.write_text("")
        self.assertEqual(self.collector.render(self.collector.collect()), [])

    def test_collect_reads_table(self):
        self.conntrack.write_text(SCENARIO_A + "\n" + "not a conntrack line\n")
        counters = self.collector.collect()
        self.assertEqual(counters.tx["192.168.1.21"], 1000)
        self.assertEqual(counters.rx["192.168.1.21"], 2000)


if __name__ == '__main__':
    unittest.main()
