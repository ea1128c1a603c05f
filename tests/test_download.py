"""Tests for the download fallback chain against local aiohttp servers."""

import asyncio
import socket
import unittest

from aiohttp import web
from aiohttp.test_utils import TestServer

from speedbuffy.catalog import ServerDescriptor, payload_bytes
from speedbuffy.download import DownloadTester, partition
from speedbuffy.stats import Outcome

SIZE_MB = 0.01  # 10486 bytes


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _closed_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


class TestPartition(unittest.TestCase):
    def test_even_split(self):
        self.assertEqual(partition(100, 4), [(0, 24), (25, 49), (50, 74), (75, 99)])

    def test_last_range_absorbs_remainder(self):
        ranges = partition(10, 3)
        self.assertEqual(ranges, [(0, 2), (3, 5), (6, 9)])

    def test_covers_every_byte_once(self):
        ranges = partition(10486, 7)
        self.assertEqual(ranges[0][0], 0)
        self.assertEqual(ranges[-1][1], 10485)
        for (_, end), (start, _) in zip(ranges, ranges[1:]):
            self.assertEqual(start, end + 1)

    def test_more_chunks_than_bytes(self):
        self.assertEqual(len(partition(3, 10)), 3)

    def test_empty(self):
        self.assertEqual(partition(0, 4), [])


class BytesServer:
    """Serves ``/data/{n}`` with optional range support and fault injection."""

    def __init__(
        self,
        accept_ranges=True,
        honor_range=True,
        fail_range_start=None,
        empty_body=False,
        status=200,
        get_status=None,
        stall_range_start=None,
        clock=None,
    ):
        self.accept_ranges = accept_ranges
        self.honor_range = honor_range
        self.fail_range_start = fail_range_start
        self.empty_body = empty_body
        self.status = status
        self.get_status = get_status  # answer every GET with this status
        self.stall_range_start = stall_range_start  # send half, then hang
        self.clock = clock
        self.requests = []  # (method, Range header or None)

        app = web.Application()
        app.router.add_get("/data/{size}", self.handle)
        self.server = TestServer(app, host="127.0.0.1")

    async def start(self):
        await self.server.start_server()
        return self

    async def close(self):
        await self.server.close()

    def url(self, scheme="http"):
        return f"{scheme}://127.0.0.1:{self.server.port}/data/BYTES"

    def ranged_gets(self):
        return [r for m, r in self.requests if m == "GET" and r]

    def full_gets(self):
        return [r for m, r in self.requests if m == "GET" and not r]

    async def handle(self, request):
        size = int(request.match_info["size"])
        range_header = request.headers.get("Range")
        self.requests.append((request.method, range_header))

        headers = {"Accept-Ranges": "bytes" if self.accept_ranges else "none"}
        if self.status != 200:
            return web.Response(status=self.status, headers=headers)
        if request.method == "HEAD":
            return web.Response(headers=headers)
        if self.clock is not None:
            self.clock.now += 1.0
        if self.get_status is not None:
            return web.Response(status=self.get_status, headers=headers)

        if range_header and self.honor_range:
            start, end = (int(x) for x in range_header[len("bytes="):].split("-"))
            if start == self.fail_range_start:
                return web.Response(status=500, headers=headers)
            if start == self.stall_range_start:
                resp = web.StreamResponse(status=206, headers=headers)
                resp.content_length = end - start + 1
                await resp.prepare(request)
                await resp.write(b"x" * ((end - start + 1) // 2))
                await asyncio.sleep(1.5)
                return resp
            headers["Content-Range"] = f"bytes {start}-{end}/{size}"
            return web.Response(status=206, body=b"x" * (end - start + 1), headers=headers)

        body = b"" if self.empty_body else b"x" * size
        return web.Response(body=body, headers=headers)


class TestDownloadTester(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.servers = []
        self.total = payload_bytes(SIZE_MB)

    async def asyncTearDown(self):
        for server in self.servers:
            await server.close()

    async def _serve(self, **kwargs):
        server = await BytesServer(**kwargs).start()
        self.servers.append(server)
        return server

    async def test_ranged_success(self):
        srv = await self._serve()
        tester = DownloadTester(size_mb=SIZE_MB, cap_seconds=10, chunk_count=4)
        sample = await tester.test([ServerDescriptor("Local", srv.url())])

        self.assertIs(sample.outcome, Outcome.SUCCESS)
        self.assertEqual(sample.bytes_total, self.total)
        self.assertEqual(sample.server, srv.url().replace("BYTES", str(self.total)))
        self.assertEqual(len(srv.ranged_gets()), 4)
        self.assertEqual(srv.full_gets(), [])
        self.assertGreater(sample.mbytes_per_sec, 0)
        self.assertAlmostEqual(sample.mbits_per_sec, sample.mbytes_per_sec * 8)

    async def test_first_server_down_uses_second(self):
        srv = await self._serve()
        dead = f"http://127.0.0.1:{_closed_port()}/data/BYTES"
        seen = []
        tester = DownloadTester(size_mb=SIZE_MB, cap_seconds=10, chunk_count=2)
        tester.on_server = seen.append
        sample = await tester.test([
            ServerDescriptor("Dead", dead),
            ServerDescriptor("Local", srv.url()),
        ])

        self.assertIs(sample.outcome, Outcome.SUCCESS)
        self.assertTrue(sample.server.startswith(f"http://127.0.0.1:{srv.server.port}/"))
        self.assertEqual(len(seen), 2)

    async def test_no_range_support_uses_full_fetch(self):
        srv = await self._serve(accept_ranges=False)
        tester = DownloadTester(size_mb=SIZE_MB, cap_seconds=10, chunk_count=4)
        sample = await tester.test([ServerDescriptor("Local", srv.url())])

        self.assertIs(sample.outcome, Outcome.SUCCESS)
        self.assertEqual(sample.bytes_total, self.total)
        self.assertEqual(srv.ranged_gets(), [])
        self.assertEqual(len(srv.full_gets()), 1)

    async def test_https_failure_falls_back_to_http(self):
        srv = await self._serve()
        tester = DownloadTester(size_mb=SIZE_MB, cap_seconds=10, chunk_count=2)
        sample = await tester.test([ServerDescriptor("Local", srv.url("https"))])

        self.assertIs(sample.outcome, Outcome.SUCCESS)
        self.assertTrue(sample.server.startswith("http://"))
        self.assertEqual(len(srv.ranged_gets()), 2)

    async def test_failed_chunk_falls_back_to_full_fetch(self):
        srv = await self._serve(fail_range_start=partition(payload_bytes(SIZE_MB), 4)[2][0])
        tester = DownloadTester(size_mb=SIZE_MB, cap_seconds=10, chunk_count=4)
        sample = await tester.test([ServerDescriptor("Local", srv.url())])

        self.assertIs(sample.outcome, Outcome.SUCCESS)
        self.assertEqual(sample.bytes_total, self.total)
        self.assertEqual(len(srv.ranged_gets()), 3)
        self.assertEqual(len(srv.full_gets()), 1)

    async def test_range_ignored_falls_back_to_full_fetch(self):
        srv = await self._serve(honor_range=False)
        tester = DownloadTester(size_mb=SIZE_MB, cap_seconds=10, chunk_count=4)
        sample = await tester.test([ServerDescriptor("Local", srv.url())])

        self.assertIs(sample.outcome, Outcome.SUCCESS)
        self.assertEqual(sample.bytes_total, self.total)
        self.assertEqual(len(srv.full_gets()), 1)

    async def test_time_cap_gives_partial_result(self):
        clock = FakeClock()
        srv = await self._serve(clock=clock)
        tester = DownloadTester(size_mb=SIZE_MB, cap_seconds=3.5, chunk_count=10, clock=clock)
        sample = await tester.test([ServerDescriptor("Local", srv.url())])

        chunk = partition(self.total, 10)[0]
        chunk_size = chunk[1] - chunk[0] + 1
        self.assertIs(sample.outcome, Outcome.PARTIAL_FAILURE)
        self.assertEqual(sample.reason, "time cap reached")
        self.assertEqual(len(srv.ranged_gets()), 4)
        self.assertEqual(sample.bytes_total, 4 * chunk_size)
        self.assertAlmostEqual(sample.seconds, 4.0)
        self.assertEqual(srv.full_gets(), [])

    async def test_time_cap_spans_strategies_and_servers(self):
        clock = FakeClock()
        first = await self._serve(get_status=500, clock=clock)
        second = await self._serve(get_status=500, clock=clock)
        third = await self._serve(get_status=500, clock=clock)
        tester = DownloadTester(size_mb=SIZE_MB, cap_seconds=2.5, chunk_count=4, clock=clock)
        sample = await tester.test([
            ServerDescriptor("First", first.url()),
            ServerDescriptor("Second", second.url()),
            ServerDescriptor("Third", third.url()),
        ])

        # first: ranged chunk (t=1), full fetch (t=2); second: ranged chunk (t=3)
        self.assertIs(sample.outcome, Outcome.FAILED)
        self.assertEqual(sample.reason, "time cap reached")
        self.assertEqual(len(first.ranged_gets()), 1)
        self.assertEqual(len(first.full_gets()), 1)
        self.assertEqual(len(second.ranged_gets()), 1)
        self.assertEqual(second.full_gets(), [])
        self.assertEqual(third.requests, [])
        self.assertEqual(clock.now, 3.0)

    async def test_cap_during_chunk_keeps_bytes_read(self):
        ranges = partition(self.total, 4)
        srv = await self._serve(stall_range_start=ranges[1][0])
        tester = DownloadTester(size_mb=SIZE_MB, cap_seconds=1.0, chunk_count=4)
        sample = await tester.test([ServerDescriptor("Local", srv.url())])

        first_chunk = ranges[0][1] - ranges[0][0] + 1
        self.assertIs(sample.outcome, Outcome.PARTIAL_FAILURE)
        self.assertEqual(sample.reason, "time cap reached")
        self.assertGreater(sample.bytes_total, first_chunk)
        self.assertLess(sample.bytes_total, 2 * first_chunk)
        self.assertEqual(len(srv.ranged_gets()), 2)
        self.assertEqual(srv.full_gets(), [])

    async def test_empty_body_tries_next_server(self):
        empty = await self._serve(accept_ranges=False, empty_body=True)
        good = await self._serve(accept_ranges=False)
        tester = DownloadTester(size_mb=SIZE_MB, cap_seconds=10)
        sample = await tester.test([
            ServerDescriptor("Empty", empty.url()),
            ServerDescriptor("Good", good.url()),
        ])

        self.assertIs(sample.outcome, Outcome.SUCCESS)
        self.assertEqual(len(empty.full_gets()), 1)
        self.assertTrue(sample.server.startswith(f"http://127.0.0.1:{good.server.port}/"))

    async def test_all_servers_fail(self):
        srv = await self._serve(status=404)
        dead = f"http://127.0.0.1:{_closed_port()}/data/BYTES"
        tester = DownloadTester(size_mb=SIZE_MB, cap_seconds=10)
        sample = await tester.test([
            ServerDescriptor("Missing", srv.url()),
            ServerDescriptor("Dead", dead),
        ])

        self.assertIs(sample.outcome, Outcome.FAILED)
        self.assertEqual(sample.bytes_total, 0)
        self.assertEqual(sample.mbytes_per_sec, 0.0)
        self.assertEqual(sample.server, dead.replace("BYTES", str(self.total)))

    async def test_progress_reported(self):
        srv = await self._serve()
        updates = []
        tester = DownloadTester(size_mb=SIZE_MB, cap_seconds=10, chunk_count=4)
        tester.on_progress = lambda fraction, speed: updates.append(fraction)
        await tester.test([ServerDescriptor("Local", srv.url())])

        self.assertEqual(len(updates), 4)
        self.assertAlmostEqual(updates[-1], 1.0)


if __name__ == "__main__":
    unittest.main()
