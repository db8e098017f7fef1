import threading
from collections import Counter
from pathlib import Path

import pytest

from qrstamp.batch import (
    BatchCoordinator,
    BatchJob,
    BatchStatus,
    FileProgressSink,
    MemoryProgressSink,
    ResumeInfo,
    effective_bounds,
    format_duration,
    stride_partition,
)
from qrstamp.document import DocumentStamper
from qrstamp.errors import BatchError, TemplateError
from qrstamp.fonts import FontLocator, FontResolver
from qrstamp.geometry import GeometrySpec, QrPlacement, TextPlacement
from qrstamp.records import Record
from qrstamp.templates import SidecarPaths, TemplateInfo

from .samples import write_template

GEOMETRY = GeometrySpec.build(
    qr_codes=[QrPlacement(x=18, y=18, size=6.3)],
    labels=[TextPlacement(x=27, y=28, size=12)],
)


def _records(n):
    return [
        Record.create(i, f'https://example.com/de/{i}', f'https://ex.com/{i}')
        for i in range(n)
    ]


class FakeStamper:
    """
    Writes a placeholder file instead of a PDF, and keeps track of the
    records it has seen.
    """

    def __init__(self, on_stamp=None):
        self.calls = Counter()
        self.languages = set()
        self.on_stamp = on_stamp
        self._lock = threading.Lock()

    def stamp_document(
        self, template_path, record, geometry, output_path, language=None
    ):
        with self._lock:
            self.calls[record.id] += 1
            self.languages.add(language)
        if self.on_stamp is not None:
            self.on_stamp(record)
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(record.id.encode('ascii'))
        return 1


def _job(tmp_path, n, template_name='Flyer-Apo-de_de.pdf', **kwargs):
    return BatchJob(
        template_path=tmp_path / template_name,
        records=_records(n),
        geometry=GEOMETRY,
        output_dir=tmp_path / 'out',
        **kwargs,
    )


@pytest.mark.parametrize(
    'total,start_from,index_range,expected',
    [
        (10, 0, None, (0, 9)),
        (10, 3, None, (3, 9)),
        (10, 0, (2, 5), (2, 5)),
        (10, 4, (2, 5), (4, 5)),
        (10, 0, (5, 100), (5, 9)),
        (10, 10, None, None),
        (10, 0, (12, 20), None),
        (0, 0, None, None),
    ],
)
def test_effective_bounds(total, start_from, index_range, expected):
    assert effective_bounds(total, start_from, index_range) == expected


@pytest.mark.parametrize('threads', [1, 2, 3, 7, 25])
def test_stride_partition_covers_range(threads):
    start, end = 3, 21
    seen = Counter()
    for k in range(threads):
        part = stride_partition(start, end, threads, k)
        assert all(ix % threads == (start + k) % threads for ix in part)
        seen.update(part)
    assert set(seen) == set(range(start, end + 1))
    assert set(seen.values()) == {1}


def test_stride_partition_bad_index():
    with pytest.raises(ValueError):
        stride_partition(0, 10, 3, 3)


@pytest.mark.parametrize(
    'seconds,expected',
    [(0, '0s'), (42.4, '42s'), (125, '2m 5s'), (3723, '1h 2m 3s')],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_resume_info(tmp_path):
    info = ResumeInfo(index=12, total=100, elapsed=61.7)
    assert info.serialise() == '12|100|61'
    info.write(tmp_path / 'state' / 'resume.txt')
    assert ResumeInfo.read(tmp_path / 'state' / 'resume.txt') == ResumeInfo(
        12, 100, 61.0
    )
    assert ResumeInfo.read(tmp_path / 'nothing.txt') is None
    with pytest.raises(ValueError):
        ResumeInfo.parse('12;100')
    ResumeInfo.clear(tmp_path / 'state' / 'resume.txt')
    assert ResumeInfo.read(tmp_path / 'state' / 'resume.txt') is None
    ResumeInfo.clear(tmp_path / 'state' / 'resume.txt')


def test_job_output_path(tmp_path):
    job = _job(tmp_path, 1, template_name='Folder-Endkunde.pdf')
    assert job.template_info == TemplateInfo.from_path('Folder-Endkunde.pdf')
    assert job.effective_language == 'de'
    assert job.output_path(job.records[0]) == (
        tmp_path / 'out' / 'Folder-Endkunde-de-0000.pdf'
    )
    job = _job(tmp_path, 1, template_name='Folder-Endkunde-en.pdf')
    assert job.effective_language == 'en'


@pytest.mark.parametrize('threads', [1, 3, 8])
def test_batch_processes_every_record_once(tmp_path, threads):
    job = _job(tmp_path, 20)
    stamper = FakeStamper()
    sink = MemoryProgressSink()
    coordinator = BatchCoordinator(
        job, stamper=stamper, sink=sink, threads=threads
    )
    result = coordinator.run()

    assert result.status is BatchStatus.COMPLETED
    assert coordinator.status is BatchStatus.COMPLETED
    assert (result.total, result.processed, result.generated) == (20, 20, 20)
    assert result.resume_offset == 20
    assert set(stamper.calls) == {r.id for r in job.records}
    assert set(stamper.calls.values()) == {1}
    assert stamper.languages == {'de'}
    assert sink.finished
    assert sink.value == 1.0
    assert len(list((tmp_path / 'out').iterdir())) == 20


def test_batch_is_idempotent(tmp_path):
    job = _job(tmp_path, 12)
    stamper = FakeStamper()
    BatchCoordinator(job, stamper=stamper, threads=3).run()
    result = BatchCoordinator(job, stamper=stamper, threads=3).run()
    assert result.status is BatchStatus.COMPLETED
    assert (result.generated, result.skipped) == (0, 12)
    assert set(stamper.calls.values()) == {1}


def test_batch_cannot_rerun_completed(tmp_path):
    coordinator = BatchCoordinator(
        _job(tmp_path, 3), stamper=FakeStamper(), threads=1
    )
    coordinator.run()
    with pytest.raises(BatchError):
        coordinator.run()


def test_batch_index_range(tmp_path):
    job = _job(tmp_path, 20)
    stamper = FakeStamper()
    sink = MemoryProgressSink()
    result = BatchCoordinator(job, stamper=stamper, sink=sink, threads=2).run(
        start_from=3, index_range=(5, 9)
    )
    assert result.status is BatchStatus.COMPLETED
    assert result.total == 5
    assert sorted(stamper.calls) == ['0005', '0006', '0007', '0008', '0009']


def test_batch_nothing_to_do(tmp_path):
    sink = MemoryProgressSink()
    result = BatchCoordinator(
        _job(tmp_path, 0), stamper=FakeStamper(), sink=sink
    ).run()
    assert result.status is BatchStatus.COMPLETED
    assert result.total == 0
    assert sink.finished


def test_batch_language_override(tmp_path):
    stamper = FakeStamper()
    job = _job(tmp_path, 2, language='en')
    BatchCoordinator(job, stamper=stamper, threads=1).run()
    assert stamper.languages == {'en'}


@pytest.mark.parametrize(
    'kwargs', [dict(threads=0), dict(throttle_ms=3), dict(throttle_ms=-1)]
)
def test_batch_invalid_settings(tmp_path, kwargs):
    with pytest.raises(ValueError):
        BatchCoordinator(_job(tmp_path, 1), stamper=FakeStamper(), **kwargs)


def test_batch_throttle(tmp_path):
    result = BatchCoordinator(
        _job(tmp_path, 4), stamper=FakeStamper(), threads=2, throttle_ms=2
    ).run()
    assert result.generated == 4


def _stopping_stamper(stop_at: str):
    holder = {}

    def on_stamp(record):
        if record.id == stop_at:
            holder['coordinator'].stop()

    return FakeStamper(on_stamp=on_stamp), holder


def test_batch_stop_single_thread(tmp_path):
    job = _job(tmp_path, 30)
    stamper, holder = _stopping_stamper('0010')
    sink = MemoryProgressSink()
    coordinator = holder['coordinator'] = BatchCoordinator(
        job, stamper=stamper, sink=sink, threads=1
    )
    result = coordinator.run()

    assert result.status is BatchStatus.STOPPED
    assert coordinator.stop_requested
    assert result.generated == 11
    assert result.resume_offset == 11
    assert sink.stopped
    assert not sink.finished
    assert sink.resume == ResumeInfo(11, 30, sink.resume.elapsed)


def test_batch_stop_and_resume(tmp_path):
    job = _job(tmp_path, 30)
    stamper, holder = _stopping_stamper('0010')
    sink = MemoryProgressSink()
    coordinator = holder['coordinator'] = BatchCoordinator(
        job, stamper=stamper, sink=sink, threads=4
    )
    result = coordinator.run()
    assert result.status is BatchStatus.STOPPED
    assert result.processed < 30
    offset = result.resume_offset
    # everything below the resume offset is done
    for record in job.records[:offset]:
        assert job.output_path(record).exists()

    resumed = BatchCoordinator(
        job, stamper=stamper, sink=MemoryProgressSink(), threads=4
    ).run(start_from=offset)
    assert resumed.status is BatchStatus.COMPLETED
    assert resumed.generated + resumed.skipped == 30 - offset
    assert set(stamper.calls) == {r.id for r in job.records}
    assert set(stamper.calls.values()) == {1}


def test_stopped_batch_can_run_again(tmp_path):
    job = _job(tmp_path, 10)
    stamper, holder = _stopping_stamper('0002')
    coordinator = holder['coordinator'] = BatchCoordinator(
        job, stamper=stamper, threads=1
    )
    first = coordinator.run()
    assert first.status is BatchStatus.STOPPED
    second = coordinator.run(start_from=first.resume_offset)
    assert second.status is BatchStatus.COMPLETED
    assert second.generated == 10 - first.resume_offset


def test_file_progress_sink_stop_and_finish(tmp_path):
    info = TemplateInfo.from_path('Flyer-Apo-de_de.pdf')
    paths = SidecarPaths.for_template(tmp_path / 'state', info)
    job = _job(tmp_path, 20)
    stamper, holder = _stopping_stamper('0004')
    sink = FileProgressSink(paths, linger=0)
    coordinator = holder['coordinator'] = BatchCoordinator(
        job, stamper=stamper, sink=sink, threads=1
    )
    result = coordinator.run()

    assert paths.stop_marker.read_text() == 'stopped'
    assert ResumeInfo.read(paths.resume).index == result.resume_offset == 5
    # progress is not published once the stop has been requested
    assert 0 < sink.read_progress() <= 5 / 20

    sink = FileProgressSink(paths, linger=0)
    result = BatchCoordinator(
        job, stamper=FakeStamper(), sink=sink, threads=2
    ).run(start_from=ResumeInfo.read(paths.resume).index)
    assert result.status is BatchStatus.COMPLETED
    assert not paths.stop_marker.exists()
    assert not paths.progress.exists()
    assert not paths.resume.exists()


def test_batch_record_failure_is_isolated(tmp_path, caplog):
    def on_stamp(record):
        if record.id == '0003':
            raise TemplateError('broken')

    job = _job(tmp_path, 8)
    result = BatchCoordinator(
        job, stamper=FakeStamper(on_stamp=on_stamp), threads=3
    ).run()
    assert result.status is BatchStatus.COMPLETED
    assert (result.generated, result.failed) == (7, 1)
    assert not job.output_path(job.records[3]).exists()
    assert 'Failed to produce document for record 0003' in caplog.text


def test_batch_worker_crash(tmp_path):
    def on_stamp(record):
        if record.id == '0001':
            raise RuntimeError('boom')

    job = _job(tmp_path, 9)
    sink = MemoryProgressSink()
    coordinator = BatchCoordinator(
        job, stamper=FakeStamper(on_stamp=on_stamp), sink=sink, threads=3
    )
    with pytest.raises(BatchError) as exc_info:
        coordinator.run()
    assert coordinator.status is BatchStatus.FAILED
    (error,) = exc_info.value.errors
    assert isinstance(error, RuntimeError)
    assert sink.resume.index == 1
    # the other workers ran to completion
    for ix in (0, 2, 3, 5, 6, 8):
        assert job.output_path(job.records[ix]).exists()


def test_batch_with_document_stamper(tmp_path):
    write_template(tmp_path / 'Flyer-Apo-de_de.pdf', page_count=2)
    job = _job(tmp_path, 5)
    stamper = DocumentStamper(
        resolver=FontResolver(locator=FontLocator([tmp_path / 'fonts']))
    )
    result = BatchCoordinator(job, stamper=stamper, threads=2).run()
    assert result.status is BatchStatus.COMPLETED
    assert result.generated == 5
    for record in job.records:
        assert job.output_path(record).read_bytes().startswith(b'%PDF')


def test_batch_worker_crash_leaves_stop_marker(tmp_path):
    def on_stamp(record):
        if record.id == '0001':
            raise RuntimeError('boom')

    info = TemplateInfo.from_path('Flyer-Apo-de_de.pdf')
    paths = SidecarPaths.for_template(tmp_path / 'state', info)
    job = _job(tmp_path, 9)
    coordinator = BatchCoordinator(
        job,
        stamper=FakeStamper(on_stamp=on_stamp),
        sink=FileProgressSink(paths, linger=0),
        threads=3,
    )
    with pytest.raises(BatchError):
        coordinator.run()
    assert coordinator.status is BatchStatus.FAILED
    assert paths.stop_marker.read_text() == 'stopped'
    assert ResumeInfo.read(paths.resume).index == 1
    assert paths.progress.exists()


def test_batch_malformed_template_fails_each_record(tmp_path, caplog):
    write_template(tmp_path / 'Flyer-Apo-de_de.pdf', page_count_entry=False)
    job = _job(tmp_path, 6)
    stamper = DocumentStamper(
        resolver=FontResolver(locator=FontLocator([tmp_path / 'fonts'])),
        strict=False,
    )
    result = BatchCoordinator(job, stamper=stamper, threads=2).run()
    assert result.status is BatchStatus.COMPLETED
    assert result.failed == 6
    assert result.generated == 0
    assert 'Failed to produce document for record 0000' in caplog.text
    assert not (tmp_path / 'out').exists() or not any(
        (tmp_path / 'out').iterdir()
    )


def test_sinks_keep_largest_fraction(tmp_path):
    info = TemplateInfo.from_path('Flyer-Apo-de_de.pdf')
    file_sink = FileProgressSink(
        SidecarPaths.for_template(tmp_path / 'state', info), linger=0
    )
    memory_sink = MemoryProgressSink()
    for sink in (file_sink, memory_sink):
        sink.reset()
        sink.publish(0.5)
        # a worker that computed its fraction earlier publishes late
        sink.publish(0.25)
    assert file_sink.read_progress() == 0.5
    assert memory_sink.value == 0.5
    file_sink.reset()
    assert file_sink.read_progress() == 0.0
    file_sink.publish(0.1)
    assert file_sink.read_progress() == 0.1
