"""
pytest suite for report.py
"""

import csv
import io
from decimal import Decimal

import pytest

from errors import ReportWriteError
from metrics import DerivedEntry
from report import format_row, header_for, write_ranking


@pytest.fixture
def ranking():
    return [
        DerivedEntry('CMP001', 1000, 100, Decimal('100.506789'), 10, 0.1, 10.0506789),
        DerivedEntry('CMP002', 2000, 125, Decimal('200.2'), 20, 0.0625, 10.01),
        DerivedEntry('CMP003', 0, 0, Decimal('0'), 0, 0.0, None),
    ]


def render(ranking, metric):
    sink = io.StringIO()
    write_ranking(ranking, sink, metric)
    return sink.getvalue()


class TestHeader:

    def test_ctr_header(self):
        assert header_for('ctr') == ['campaign_id', 'impressions', 'clicks', 'spend', 'conversions', 'ctr']

    def test_cpa_header(self):
        assert header_for('cpa')[-1] == 'cpa'

    def test_unknown_metric(self):
        with pytest.raises(ValueError):
            header_for('roas')


class TestFormatting:

    def test_ctr_row(self, ranking):
        assert format_row(ranking[0], 'ctr') == ['CMP001', '1000', '100', '100.51', '10', '0.1000']

    def test_cpa_row(self, ranking):
        assert format_row(ranking[1], 'cpa') == ['CMP002', '2000', '125', '200.20', '20', '10.0100']

    def test_ratio_four_decimals(self, ranking):
        assert format_row(ranking[1], 'ctr')[-1] == '0.0625'
        assert format_row(ranking[2], 'ctr')[-1] == '0.0000'

    def test_absent_cpa_is_empty(self, ranking):
        assert format_row(ranking[2], 'cpa')[-1] == ''

    def test_large_integers_undecorated(self):
        row = format_row(DerivedEntry('X', 12_345_678_901, 1, Decimal('1'), 1, 0.0, 1.0), 'ctr')
        assert row[1] == '12345678901'


class TestWriteRanking:

    def test_exact_output(self, ranking):
        assert render(ranking[:2], 'ctr') == (
            'campaign_id,impressions,clicks,spend,conversions,ctr\n'
            'CMP001,1000,100,100.51,10,0.1000\n'
            'CMP002,2000,125,200.20,20,0.0625\n'
        )

    def test_rank_order_preserved(self, ranking):
        reversed_rows = list(csv.reader(io.StringIO(render(ranking[::-1], 'ctr'))))
        assert [row[0] for row in reversed_rows[1:]] == ['CMP003', 'CMP002', 'CMP001']

    def test_every_row_has_six_columns(self, ranking):
        rows = list(csv.reader(io.StringIO(render(ranking, 'cpa'))))
        assert all(len(row) == 6 for row in rows)

    def test_empty_ranking_writes_header_only(self):
        assert render([], 'cpa') == 'campaign_id,impressions,clicks,spend,conversions,cpa\n'

    def test_returns_row_count(self, ranking):
        assert write_ranking(ranking, io.StringIO(), 'ctr') == 3

    def test_campaign_id_with_delimiter_is_quoted(self):
        entry = DerivedEntry('camp,001', 1, 1, Decimal('1'), 1, 1.0, 1.0)
        text = render([entry], 'ctr')
        assert text.splitlines()[1].startswith('"camp,001",')
        assert list(csv.reader(io.StringIO(text)))[1][0] == 'camp,001'

    def test_write_failure_is_fatal(self, ranking):
        class FullDisk(io.StringIO):
            def write(self, s):
                raise OSError('No space left on device')

        with pytest.raises(ReportWriteError) as exc_info:
            write_ranking(ranking, FullDisk(), 'ctr')
        assert exc_info.value.report == 'ctr'
        assert 'No space left' in str(exc_info.value)

    def test_closed_sink_is_fatal(self, ranking):
        sink = io.StringIO()
        sink.close()

        with pytest.raises(ReportWriteError) as exc_info:
            write_ranking(ranking, sink, 'cpa')
        assert exc_info.value.report == 'cpa'
