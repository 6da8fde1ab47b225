import gzip
from io import BytesIO

import cbor2
import pytest
from hodeco import PafParseError, OffsetMapError
from hodeco.containers.alignment import Cigar, PafRecord
from hodeco.core.offsets import OffsetTable, OffsetTableStore
from hodeco.io import Qualifier
from hodeco.io.offsets import OffsetMapReader, load_offset_store, write_offset_store
from hodeco.io.tabular import PafReader, PafWriter
from hodeco.lib.io import Xopen

PAF_LINE = (b"read1\t3\t0\t3\t+\tctg1\t3\t0\t3\t3\t3\t60\tNM:i:0\ttp:A:P\tcg:Z:3M\tcs:Z::3\tdv:f:0.0100")


def read_paf(data: bytes) -> list[PafRecord]:
    return list(PafReader(BytesIO(data)))


class TestQualifier:
    def test_parse_tags(self):
        assert Qualifier.parse_tags([b'NM:i:3', b'cs:Z::3*ac']) == [(b'NM', b'i', b'3'), (b'cs', b'Z', b':3*ac')]

    def test_malformed_tag(self):
        with pytest.raises(PafParseError, match="Malformed tag"):
            Qualifier.parse_tags([b'NM3'])

    def test_convert(self):
        assert Qualifier.convert(b'NM', b'i', b'3') == 3
        assert Qualifier.convert(b'dv', b'f', b'0.5') == 0.5
        assert Qualifier.convert(b'tp', b'A', b'P') == b'P'

    def test_convert_invalid(self):
        with pytest.raises(PafParseError, match="NM:i"):
            Qualifier.convert(b'NM', b'i', b'x')

    def test_format(self):
        assert Qualifier.format(b'NM', 3) == b'NM:i:3'
        assert Qualifier.format(b'dv', 0.12346) == b'dv:f:0.1235'
        assert Qualifier.format(b'tp', b'P') == b'tp:Z:P'

    def test_format_small_float(self):
        assert Qualifier.format(b'dv', 0.00002) == b'dv:f:2e-05'
        assert Qualifier.format(b'dv', 0.0) == b'dv:f:0.0000'


class TestPafReader:
    def test_fields(self):
        record, = read_paf(PAF_LINE + b"\n")
        assert record.query == b'read1'
        assert (record.query_length, record.query_start, record.query_end) == (3, 0, 3)
        assert record.strand == b'+'
        assert record.target == b'ctg1'
        assert (record.n_matches, record.length, record.quality) == (3, 3, 60)
        assert record.cigar == Cigar.parse(b'3M')
        assert bytes(record.difference) == b':3'
        assert record.mismatches == 0
        assert record.divergence == pytest.approx(0.01)
        assert record.gap_compressed_divergence is None

    def test_skips_blank_and_comment_lines(self):
        records = read_paf(b"# header\n\n" + PAF_LINE + b"\r\n" + PAF_LINE)
        assert len(records) == 2

    def test_short_line(self):
        with pytest.raises(PafParseError, match="Line 2: expected at least 12 columns, found 3"):
            read_paf(PAF_LINE + b"\na\tb\tc\n")

    def test_bad_integer(self):
        with pytest.raises(PafParseError, match="Line 1:"):
            read_paf(PAF_LINE.replace(b"\t60\t", b"\tsixty\t"))

    def test_bad_strand(self):
        with pytest.raises(PafParseError, match="Line 1: Invalid strand"):
            read_paf(PAF_LINE.replace(b"\t+\t", b"\t*\t"))

    def test_wrong_tag_type(self):
        with pytest.raises(PafParseError, match="NM must have type i"):
            read_paf(PAF_LINE.replace(b"NM:i:0", b"NM:Z:0"))

    def test_bad_cigar_names_line(self):
        with pytest.raises(PafParseError, match="Line 1: Malformed CIGAR"):
            read_paf(PAF_LINE.replace(b"cg:Z:3M", b"cg:Z:3Q"))

    def test_chunk_boundaries(self):
        data = b"\n".join([PAF_LINE] * 2000) + b"\n"
        assert len(read_paf(data)) == 2000


class TestPafWriter:
    def test_round_trip(self):
        record, = read_paf(PAF_LINE)
        assert PafWriter.format(record) == PAF_LINE

    def test_updated_fields_keep_tag_order(self):
        record, = read_paf(PAF_LINE)
        record.mismatches = 2
        record.cigar = Cigar.parse(b'4M')
        line = PafWriter.format(record)
        assert line.split(b"\t")[12:] == [b'NM:i:2', b'tp:A:P', b'cg:Z:4M', b'cs:Z::3', b'dv:f:0.0100']

    def test_appends_fields_without_tags(self):
        record = PafRecord(b'q', 4, 0, 4, b'+', b't', 4, 0, 4, n_matches=4, length=4, cigar=Cigar.parse(b'4M'),
                           mismatches=0)
        assert PafWriter.format(record) == b"q\t4\t0\t4\t+\tt\t4\t0\t4\t4\t4\t255\tNM:i:0\tcg:Z:4M"

    def test_write_to_file(self, tmp_path):
        record, = read_paf(PAF_LINE)
        path = tmp_path / 'out.paf'
        with PafWriter(path) as writer:
            writer.write(record, [record])
        assert path.read_bytes() == (PAF_LINE + b"\n") * 2

    def test_rejects_other_objects(self, tmp_path):
        with PafWriter(tmp_path / 'out.paf') as writer:
            with pytest.raises(TypeError):
                writer.write_one('not a record')


class TestOffsetMaps:
    def test_read(self):
        data = cbor2.dumps(['ctg1', [0, 1, 3, 4]]) + cbor2.dumps(['ctg2', [0, 2]])
        assert list(OffsetMapReader(BytesIO(data))) == [('ctg1', [0, 1, 3, 4]), ('ctg2', [0, 2])]

    def test_empty_stream(self):
        assert list(OffsetMapReader(BytesIO(b''))) == []

    def test_write_then_load(self, tmp_path):
        path = tmp_path / 'map.cbor'
        write_offset_store(path, [('ctg1', OffsetTable([0, 1, 3, 4])), ('ctg2', [0, 2])])
        store = load_offset_store(path)
        assert isinstance(store, OffsetTableStore)
        assert store['ctg1'] == OffsetTable([0, 1, 3, 4])
        assert store['ctg2'].decompressed_length == 2

    def test_load_gzip(self, tmp_path):
        path = tmp_path / 'map.cbor.gz'
        path.write_bytes(gzip.compress(cbor2.dumps(['ctg1', [0, 3]])))
        assert load_offset_store(path)['ctg1'].decompressed_length == 3

    def test_truncated_stream(self):
        data = cbor2.dumps(['ctg1', [0, 1]]) + cbor2.dumps(['ctg2', [0, 1, 2, 3]])[:-1]
        with pytest.raises(OffsetMapError, match="Cannot decode offset map item 1"):
            load_offset_store(BytesIO(data))

    def test_item_not_a_pair(self):
        with pytest.raises(OffsetMapError, match="item 0 is not a \\[name, offsets\\] pair"):
            load_offset_store(BytesIO(cbor2.dumps({'ctg1': [0, 1]})))

    def test_duplicate_policy(self):
        data = cbor2.dumps(['ctg1', [0, 1]]) + cbor2.dumps(['ctg1', [0, 2]])
        assert load_offset_store(BytesIO(data))['ctg1'].decompressed_length == 2
        with pytest.raises(OffsetMapError, match="Duplicate"):
            load_offset_store(BytesIO(data), duplicates='error')


class TestXopen:
    def test_plain_file(self, tmp_path):
        path = tmp_path / 'x.paf'
        path.write_bytes(PAF_LINE)
        with Xopen(path) as handle:
            assert handle.read() == PAF_LINE

    def test_gzip_round_trip(self, tmp_path):
        path = tmp_path / 'x.paf.gz'
        with Xopen(path, 'wb') as handle:
            handle.write(PAF_LINE)
        assert gzip.decompress(path.read_bytes()) == PAF_LINE
        with Xopen(path, 'rb') as handle:
            assert handle.read() == PAF_LINE

    def test_gzip_handle(self):
        with Xopen(BytesIO(gzip.compress(PAF_LINE))) as handle:
            assert handle.read() == PAF_LINE

    def test_text_mode_rejected(self):
        with pytest.raises(ValueError, match="binary"):
            Xopen('x.paf', 'r')
