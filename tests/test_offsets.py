import numpy as np
import pytest
from hodeco import OffsetMapError, MissingOffsetTableError, OffsetIndexError
from hodeco.core.offsets import OffsetTable, OffsetTableStore, homopolymer_compress


class TestOffsetTableInit:
    def test_valid_table(self):
        table = OffsetTable([0, 1, 3, 4])
        assert table.compressed_length == 3
        assert table.decompressed_length == 4
        assert len(table) == 4
        assert list(table) == [0, 1, 3, 4]

    def test_array_is_read_only(self):
        table = OffsetTable([0, 2, 3])
        with pytest.raises(ValueError):
            table.array[0] = 5

    def test_copies_input(self):
        data = np.array([0, 2, 3])
        table = OffsetTable(data)
        data[1] = 1
        assert table[1] == 2

    def test_must_start_at_zero(self):
        with pytest.raises(OffsetMapError, match="start at 0"):
            OffsetTable([1, 2, 3])

    def test_must_be_non_decreasing(self):
        with pytest.raises(OffsetMapError, match="non-decreasing"):
            OffsetTable([0, 3, 2])

    def test_must_not_be_empty(self):
        with pytest.raises(OffsetMapError, match="non-empty"):
            OffsetTable([])

    def test_must_be_integers(self):
        with pytest.raises(OffsetMapError, match="integers"):
            OffsetTable([0.0, 1.5])

    def test_equal_runs_allowed(self):
        # Zero-length runs are not produced by compression but are valid tables
        assert OffsetTable([0, 1, 1, 2]).decompressed_length == 2

    def test_empty_sequence(self):
        table = OffsetTable([0])
        assert table.compressed_length == 0
        assert table.decompressed_length == 0


class TestOffsetTableConstructors:
    def test_identity(self):
        table = OffsetTable.identity(5)
        np.testing.assert_array_equal(table.array, np.arange(6))

    def test_from_sequence(self):
        assert OffsetTable.from_sequence(b'AAACGG').array.tolist() == [0, 3, 4, 6]

    def test_from_sequence_without_homopolymers(self):
        assert OffsetTable.from_sequence(b'ACGT') == OffsetTable.identity(4)

    def test_homopolymer_compress(self):
        compressed, table = homopolymer_compress(b'AAACGGTTTT')
        assert compressed == b'ACGT'
        assert table.array.tolist() == [0, 3, 4, 6, 10]

    def test_homopolymer_compress_empty(self):
        compressed, table = homopolymer_compress(b'')
        assert compressed == b''
        assert table.array.tolist() == [0]


class TestOffsetTableLookup:
    table = OffsetTable([0, 1, 3, 4])

    def test_getitem(self):
        assert [self.table[i] for i in range(4)] == [0, 1, 3, 4]

    def test_getitem_out_of_range(self):
        with pytest.raises(OffsetIndexError, match="outside offset table"):
            self.table[4]

    def test_getitem_negative(self):
        with pytest.raises(OffsetIndexError):
            self.table[-1]

    def test_offset_index_error_is_index_error(self):
        with pytest.raises(IndexError):
            self.table[10]

    def test_span(self):
        assert self.table.span(0, 3) == 4
        assert self.table.span(1, 1) == 2
        assert self.table.span(2, 0) == 0

    def test_span_past_end(self):
        with pytest.raises(OffsetIndexError):
            self.table.span(2, 2)

    def test_check_range(self):
        self.table.check_range(0, 3)
        self.table.check_range(3, 0)
        with pytest.raises(OffsetIndexError):
            self.table.check_range(3, 1)

    def test_run_lengths(self):
        np.testing.assert_array_equal(self.table.run_lengths(0, 3), [1, 2, 1])

    def test_decompress(self):
        assert self.table.decompress(b'ACG', 0) == b'ACCG'
        assert self.table.decompress(b'c', 1) == b'cc'

    def test_decompress_past_end(self):
        with pytest.raises(OffsetIndexError):
            self.table.decompress(b'AC', 2)


class TestOffsetTableStore:
    def test_build_and_lookup(self):
        store = OffsetTableStore.build([('ctg1', [0, 1, 3, 4]), ('ctg2', [0, 2])])
        assert len(store) == 2
        assert store['ctg1'].decompressed_length == 4
        assert store[b'ctg2'].decompressed_length == 2
        assert 'ctg1' in store and b'ctg1' in store
        assert sorted(store) == ['ctg1', 'ctg2']

    def test_missing_name(self):
        store = OffsetTableStore.build([('ctg1', [0, 1])])
        with pytest.raises(MissingOffsetTableError, match="missing offset table for sequence `ctg9`"):
            store[b'ctg9']

    def test_get_default(self):
        store = OffsetTableStore.build([('ctg1', [0, 1])])
        assert store.get('ctg9') is None

    def test_duplicates_keep_last(self, caplog):
        store = OffsetTableStore.build([('ctg1', [0, 1]), ('ctg1', [0, 3])])
        assert store['ctg1'].decompressed_length == 3
        assert "Duplicate offset table" in caplog.text

    def test_duplicates_error(self):
        with pytest.raises(OffsetMapError, match="Duplicate"):
            OffsetTableStore.build([('ctg1', [0, 1]), ('ctg1', [0, 3])], duplicates='error')

    def test_invalid_table_names_sequence(self):
        with pytest.raises(OffsetMapError, match="ctg2"):
            OffsetTableStore.build([('ctg1', [0, 1]), ('ctg2', [0, 2, 1])])

    def test_malformed_pair(self):
        with pytest.raises(OffsetMapError, match="not a \\(name, offsets\\) pair"):
            OffsetTableStore.build([('ctg1',)])

    def test_non_text_name(self):
        with pytest.raises(OffsetMapError, match="must be text"):
            OffsetTableStore.build([(1, [0, 1])])

    def test_utf8_names(self):
        store = OffsetTableStore.build([(b'contig_\xc3\xa9', [0, 1, 3, 4])])
        assert 'contig_é' in store
        assert b'contig_\xc3\xa9' in store
        assert store[b'contig_\xc3\xa9'] is store['contig_é']

    def test_invalid_utf8_name(self):
        with pytest.raises(OffsetMapError, match="not valid UTF-8"):
            OffsetTableStore.build([(b'contig_\xff', [0, 1])])
