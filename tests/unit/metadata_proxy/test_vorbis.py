"""Unit tests for comment packet scanning and decoding."""

import struct

import pytest

from metadata_proxy.models import MetadataRecord
from metadata_proxy.vorbis import (
    CommentBlockParser,
    IncompletePacketError,
    InvalidPacketError,
    decode_comments,
    find_comment_offsets,
    split_comment,
)
from tests.fixtures.sample_data import (
    IDENTIFICATION_PACKET_TYPE,
    audio_noise,
    build_comment_packet,
    build_identification_header,
    length_prefixed,
)


class TestFindCommentOffsets:
    """Test signature scanning."""

    def test_empty_buffer(self):
        assert find_comment_offsets(b"") == []

    def test_offset_points_at_vorbis_tag(self):
        buffer = audio_noise(10) + b"\x03vorbis" + audio_noise(5)

        offsets = find_comment_offsets(buffer)

        assert offsets == [11]
        assert buffer[offsets[0] : offsets[0] + 6] == b"vorbis"

    def test_both_signature_types(self):
        buffer = b"\x01vorbis" + audio_noise(4) + b"\x03vorbis"

        assert find_comment_offsets(buffer) == [1, 12]

    def test_results_sorted_across_types(self):
        buffer = b"\x03vorbis\x01vorbis\x03vorbis"

        assert find_comment_offsets(buffer) == [1, 8, 15]

    def test_adjacent_matches_all_reported(self):
        buffer = b"\x03vorbis" * 3

        assert find_comment_offsets(buffer) == [1, 8, 15]

    def test_other_type_bytes_ignored(self):
        buffer = b"\x05vorbis\x02vorbis vorbis"

        assert find_comment_offsets(buffer) == []

    def test_partial_signature_at_end(self):
        assert find_comment_offsets(b"\x03vorbi") == []

    def test_start_position(self):
        buffer = b"\x03vorbis" + b"\x03vorbis"

        assert find_comment_offsets(buffer, start=1) == [8]

    def test_bytearray_and_memoryview(self):
        data = b"xx\x03vorbis"

        assert find_comment_offsets(bytearray(data)) == [3]
        assert find_comment_offsets(memoryview(data)) == [3]


class TestSplitComment:
    """Test comment splitting."""

    def test_splits_on_first_equals(self):
        assert split_comment(b"TITLE=a=b") == ("TITLE", "a=b")

    def test_trims_both_sides(self):
        assert split_comment(b"  ARTIST \t=  Someone  ") == ("ARTIST", "Someone")

    def test_no_equals(self):
        assert split_comment(b" lonely ") == ("lonely", "")

    def test_invalid_utf8_replaced(self):
        key, value = split_comment(b"TITLE=caf\xff")

        assert key == "TITLE"
        assert value == "caf\ufffd"

    def test_unicode_preserved(self):
        assert split_comment("ARTIST=Björk ♫".encode("utf-8")) == ("ARTIST", "Björk ♫")


class TestDecodeComments:
    """Test standalone decoding."""

    @pytest.mark.parametrize("count", [0, 1, 5])
    def test_decodes_n_pairs(self, count):
        comments = [(f" key{i} ", f" value {i} ") for i in range(count)]
        packet = build_comment_packet(comments)

        pairs = decode_comments(packet, offset=1)

        assert pairs == [(f"key{i}", f"value {i}") for i in range(count)]

    def test_missing_tag(self):
        with pytest.raises(InvalidPacketError):
            decode_comments(b"\x03vorbix" + b"\x00" * 8, offset=1)

    def test_truncated(self):
        packet = build_comment_packet([("TITLE", "Song")])

        with pytest.raises(IncompletePacketError):
            decode_comments(packet[:-2], offset=1)


class TestCommentBlockParser:
    """Test decoding packets into a working record."""

    @pytest.fixture
    def parser(self):
        return CommentBlockParser()

    @pytest.mark.parametrize("count", [0, 1, 3])
    def test_cursor_ends_at_packet_end(self, parser, count):
        comments = [(f"k{i}", f"v{i}") for i in range(count)]
        packet = build_comment_packet(comments)
        buffer = audio_noise(20) + packet + audio_noise(20)
        offset = find_comment_offsets(buffer)[0]

        result = parser.parse(buffer, offset, MetadataRecord())

        assert result.complete is True
        assert result.valid is True
        assert result.comments == comments
        assert result.end == 20 + len(packet)

    def test_merges_into_record(self, parser):
        packet = build_comment_packet([("ARTIST", "A"), ("TITLE", "T"), ("ENCODER", "x")])
        record = MetadataRecord()

        result = parser.parse(packet, 1, record)

        assert result.changed is True
        assert record.artist == "A"
        assert record.title == "T"
        assert record.extensions == {"ENCODER": "x"}

    def test_unchanged_content_reports_no_change(self, parser):
        packet = build_comment_packet([("ARTIST", "A"), ("TITLE", "T")])
        record = MetadataRecord()
        parser.parse(packet, 1, record)

        result = parser.parse(packet, 1, record)

        assert result.complete is True
        assert result.changed is False

    def test_identification_packet_type(self, parser):
        packet = build_comment_packet([("TITLE", "T")], packet_type=IDENTIFICATION_PACKET_TYPE)
        record = MetadataRecord()

        assert parser.parse(packet, 1, record).changed is True
        assert record.title == "T"

    def test_truncated_packet_keeps_merged_entries(self, parser):
        packet = build_comment_packet([("ARTIST", "A"), ("TITLE", "A long title")])
        record = MetadataRecord()

        result = parser.parse(packet[:-3], 1, record)

        assert result.complete is False
        assert result.changed is True
        assert record.artist == "A"
        assert record.title == "Unknown"
        assert result.comments == [("ARTIST", "A")]

    @pytest.mark.parametrize("cut", [3, 7, 10, 14])
    def test_truncated_header_is_silent(self, parser, cut):
        packet = build_comment_packet([("TITLE", "T")])
        record = MetadataRecord()

        result = parser.parse(packet[:cut], 1, record)

        assert result.complete is False
        assert result.changed is False
        assert record == MetadataRecord(last_update=record.last_update)

    def test_missing_tag_is_invalid(self, parser):
        result = parser.parse(b"\x03vorbiz" + b"\x00" * 8, 1, MetadataRecord())

        assert result.valid is False
        assert result.complete is True
        assert result.changed is False

    def test_huge_length_prefix_is_incomplete(self, parser):
        data = b"\x03vorbis" + struct.pack("<I", 0xFFFFFFFF) + b"vendor"

        result = parser.parse(data, 1, MetadataRecord())

        assert result.complete is False

    def test_resumes_after_more_bytes(self, parser):
        packet = build_comment_packet([("ARTIST", "A"), ("TITLE", "T")])
        record = MetadataRecord()
        buffer = bytearray(packet[:-1])

        first = parser.parse(buffer, 1, record)
        buffer.extend(packet[-1:])
        second = parser.parse(buffer, 1, record)

        assert first.complete is False
        assert second.complete is True
        assert second.changed is True
        assert record.title == "T"

    def test_vendor_string_ignored(self, parser):
        packet = (
            b"\x03vorbis"
            + length_prefixed(b"TITLE=not a comment")
            + struct.pack("<I", 1)
            + length_prefixed(b"ARTIST=Real")
        )
        record = MetadataRecord()

        parser.parse(packet, 1, record)

        assert record.title == "Unknown"
        assert record.artist == "Real"

    def test_empty_key_skipped(self, parser):
        packet = build_comment_packet(["=orphan", "", ("TITLE", "T")])
        record = MetadataRecord()

        result = parser.parse(packet, 1, record)

        assert result.complete is True
        assert result.comments == [("TITLE", "T")]
        assert record.extensions == {}

    def test_identification_header_merges_nothing(self, parser):
        record = MetadataRecord()

        result = parser.parse(build_identification_header(), 1, record)

        assert result.complete is False
        assert result.changed is False
        assert result.comments == []
        assert record.to_dict() == MetadataRecord(last_update=record.last_update).to_dict()
