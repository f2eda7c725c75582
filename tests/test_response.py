"""
Tests for response assembly
"""
import unittest
from datetime import datetime, timezone

from rtsp_server.core.request_parser import RTSPParser
from rtsp_server.core.response import ResponseBuilder, STATUS_BAD_REQUEST
from tests.helpers import parse_response, rtsp_request

FIXED_TIME = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class ResponseBuilderTests(unittest.TestCase):
    def setUp(self):
        self.builder = ResponseBuilder(clock=lambda: FIXED_TIME)
        self.request = RTSPParser().parse(
            rtsp_request("DESCRIBE", url="rtsp://10.0.0.1/stream", cseq=5,
                         headers={"Accept": "application/sdp"}),
            "192.168.1.5",
        )

    def test_without_body(self):
        response = self.builder.build(self.request, ["Session: 1"])
        self.assertEqual(
            response,
            "RTSP/1.0 200 OK\r\n"
            "CSeq: 5\r\n"
            "Date: Thu, 02 Jan 2025 03:04:05 GMT\r\n"
            "Session: 1\r\n"
            "\r\n",
        )
        self.assertNotIn("Content-", response)

    def test_with_body(self):
        body = "v=0\r\ns=café\r\n"
        response = self.builder.build(self.request, [], body)
        status, headers, parsed_body = parse_response(response)

        self.assertEqual(status, "RTSP/1.0 200 OK")
        self.assertEqual(headers["Content-Type"], "application/sdp")
        self.assertEqual(headers["Content-Base"], "rtsp://10.0.0.1/stream/")
        self.assertEqual(int(headers["Content-Length"]), len(body.encode("utf-8")))
        self.assertNotEqual(int(headers["Content-Length"]), len(body))
        self.assertEqual(parsed_body, body)
        self.assertTrue(response.endswith(body))

    def test_header_order(self):
        response = self.builder.build(self.request, ["X-First: 1", "X-Second: 2"], "body")
        names = [line.split(":", 1)[0] for line in response.split("\r\n\r\n")[0].split("\r\n")[1:]]
        self.assertEqual(
            names,
            ["CSeq", "Content-Type", "Content-Base", "Content-Length", "Date", "X-First", "X-Second"],
        )

    def test_custom_status_and_version(self):
        builder = ResponseBuilder(version="2.0", clock=lambda: FIXED_TIME)
        response = builder.build(self.request, status="454 Session Not Found")
        self.assertTrue(response.startswith("RTSP/2.0 454 Session Not Found\r\nCSeq: 5\r\n"))

    def test_build_error(self):
        response = self.builder.build_error(STATUS_BAD_REQUEST, cseq="3", body="Invalid request line")
        status, headers, body = parse_response(response)
        self.assertEqual(status, "RTSP/1.0 400 Bad Request")
        self.assertEqual(headers["CSeq"], "3")
        self.assertEqual(headers["Content-Length"], str(len("Invalid request line")))
        self.assertEqual(body, "Invalid request line")

    def test_build_error_without_cseq(self):
        response = self.builder.build_error(STATUS_BAD_REQUEST)
        self.assertNotIn("CSeq", response)
        self.assertIn("Date: Thu, 02 Jan 2025 03:04:05 GMT", response)

    def test_default_clock_is_gmt(self):
        response = ResponseBuilder().build(self.request)
        self.assertRegex(response, r"Date: \w{3}, \d{2} \w{3} \d{4} \d{2}:\d{2}:\d{2} GMT")


if __name__ == '__main__':
    unittest.main()
