import random
import struct
import threading

import pytest

from moderndbs.buffer_manager import BufferManager
from moderndbs.errors import BufferFullError
from moderndbs.pid import make_page_id

PAGE_SIZE = 1024


@pytest.fixture
def manager(tmp_path):
    bm = BufferManager(PAGE_SIZE, 10, directory=tmp_path)
    yield bm
    bm.close()


def _read_u64(page):
    return struct.unpack_from("<Q", page.data, 0)[0]


def _write_u64(page, value):
    struct.pack_into("<Q", page.data, 0, value)


def _run_threads(target, count=4):
    errors = []

    def wrapper(i):
        try:
            target(i)
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=wrapper, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return errors


def _geometric(rng, p):
    failures = 0
    while rng.random() >= p:
        failures += 1
    return failures


def test_fix_single(manager):
    expected = struct.pack("<Q", 123) * (PAGE_SIZE // 8)
    page = manager.fix_page(1, True)
    assert len(page.data) == PAGE_SIZE
    page.data[:] = expected
    manager.unfix_page(page, True)
    assert manager.get_fifo_list() == [1]
    assert manager.get_lru_list() == []

    page = manager.fix_page(1, False)
    values = bytes(page.data)
    manager.unfix_page(page, True)
    assert manager.get_fifo_list() == []
    assert manager.get_lru_list() == [1]
    assert values == expected


def test_new_page_is_zeroed(manager):
    page = manager.fix_page(7, False)
    data = bytes(page.data)
    manager.unfix_page(page, False)
    assert data == bytes(PAGE_SIZE)


def test_persistent_restart(tmp_path):
    bm = BufferManager(PAGE_SIZE, 10, directory=tmp_path)
    for segment in range(3):
        for segment_page in range(10):
            page = bm.fix_page(make_page_id(segment, segment_page), True)
            _write_u64(page, segment * 10 + segment_page)
            bm.unfix_page(page, True)
    bm.close()

    with BufferManager(PAGE_SIZE, 10, directory=tmp_path) as bm:
        for segment in range(3):
            for segment_page in range(10):
                page = bm.fix_page(make_page_id(segment, segment_page), False)
                value = _read_u64(page)
                bm.unfix_page(page, False)
                assert value == segment * 10 + segment_page


def test_segment_files_named_after_segment(tmp_path):
    with BufferManager(PAGE_SIZE, 10, directory=tmp_path) as bm:
        page = bm.fix_page(make_page_id(1, 2), True)
        bm.unfix_page(page, True)
    assert (tmp_path / "1").stat().st_size == 3 * PAGE_SIZE


def test_fifo_evict(manager):
    for i in range(1, 11):
        page = manager.fix_page(i, False)
        manager.unfix_page(page, False)
    assert manager.get_fifo_list() == [1, 2, 3, 4, 5, 6, 7, 8, 9, 10]
    assert manager.get_lru_list() == []

    page = manager.fix_page(11, False)
    manager.unfix_page(page, False)
    assert manager.get_fifo_list() == [2, 3, 4, 5, 6, 7, 8, 9, 10, 11]
    assert manager.get_lru_list() == []


def test_evicted_dirty_page_is_written_back(manager):
    page = manager.fix_page(1, True)
    _write_u64(page, 4242)
    manager.unfix_page(page, True)
    for i in range(2, 12):
        other = manager.fix_page(i, False)
        manager.unfix_page(other, False)
    assert 1 not in manager.get_fifo_list()
    page = manager.fix_page(1, False)
    value = _read_u64(page)
    manager.unfix_page(page, False)
    assert value == 4242


def test_buffer_full(manager):
    pages = [manager.fix_page(i, False) for i in range(1, 11)]
    with pytest.raises(BufferFullError):
        manager.fix_page(11, False)
    for page in pages:
        manager.unfix_page(page, False)
    assert len(manager.get_fifo_list()) == 10


def test_move_to_lru(manager):
    fifo_page = manager.fix_page(1, False)
    lru_page = manager.fix_page(2, False)
    manager.unfix_page(fifo_page, False)
    manager.unfix_page(lru_page, False)
    assert manager.get_fifo_list() == [1, 2]
    assert manager.get_lru_list() == []
    lru_page = manager.fix_page(2, False)
    manager.unfix_page(lru_page, False)
    assert manager.get_fifo_list() == [1]
    assert manager.get_lru_list() == [2]


def test_lru_refresh(manager):
    for page_id in (1, 1, 2, 2):
        page = manager.fix_page(page_id, False)
        manager.unfix_page(page, False)
    assert manager.get_fifo_list() == []
    assert manager.get_lru_list() == [1, 2]
    page = manager.fix_page(1, False)
    manager.unfix_page(page, False)
    assert manager.get_fifo_list() == []
    assert manager.get_lru_list() == [2, 1]


def test_fix_after_close_fails(tmp_path):
    bm = BufferManager(PAGE_SIZE, 10, directory=tmp_path)
    bm.close()
    with pytest.raises(ValueError):
        bm.fix_page(1, False)


def test_multithread_parallel_fix(manager):
    def work(i):
        page1 = manager.fix_page(i, False)
        page2 = manager.fix_page(i + 4, False)
        manager.unfix_page(page1, False)
        manager.unfix_page(page2, False)

    assert _run_threads(work) == []
    assert sorted(manager.get_fifo_list()) == [0, 1, 2, 3, 4, 5, 6, 7]
    assert manager.get_lru_list() == []


def test_multithread_exclusive_access(manager):
    page = manager.fix_page(0, True)
    page.data[:] = bytes(PAGE_SIZE)
    manager.unfix_page(page, True)

    def work(_):
        for _ in range(1000):
            frame = manager.fix_page(0, True)
            _write_u64(frame, _read_u64(frame) + 1)
            manager.unfix_page(frame, True)

    assert _run_threads(work) == []
    assert manager.get_fifo_list() == []
    assert manager.get_lru_list() == [0]
    page = manager.fix_page(0, False)
    value = _read_u64(page)
    manager.unfix_page(page, False)
    assert value == 4000


def test_multithread_buffer_full(manager):
    failures = []
    counter_lock = threading.Lock()
    barrier = threading.Barrier(4)

    def work(i):
        pages = []
        for j in range(4):
            try:
                pages.append(manager.fix_page(i + j * 4, False))
            except BufferFullError:
                with counter_lock:
                    failures.append(i + j * 4)
        barrier.wait()
        for page in pages:
            manager.unfix_page(page, False)

    assert _run_threads(work) == []
    assert len(manager.get_fifo_list()) == 10
    assert manager.get_lru_list() == []
    assert len(failures) == 6


def test_multithread_many_pages(manager):
    def work(i):
        rng = random.Random(i)
        for _ in range(2000):
            page = manager.fix_page(_geometric(rng, 0.1), False)
            manager.unfix_page(page, False)

    assert _run_threads(work) == []
    cached = manager.get_fifo_list() + manager.get_lru_list()
    assert len(cached) <= 10
    assert len(set(cached)) == len(cached)


def test_multithread_reader_writer(tmp_path):
    with BufferManager(PAGE_SIZE, 10, directory=tmp_path) as bm:
        for segment in range(4):
            for segment_page in range(101):
                page = bm.fix_page(make_page_id(segment, segment_page), True)
                page.data[:] = bytes(PAGE_SIZE)
                bm.unfix_page(page, True)

    bm = BufferManager(PAGE_SIZE, 10, directory=tmp_path)
    aborts = []
    writes = []
    scan_violations = []
    lock = threading.Lock()

    def work(i):
        rng = random.Random(i)
        scan_sums = [0, 0, 0, 0]
        for _ in range(100):
            segment = rng.choices([0, 1, 2, 3], weights=[12, 5, 2, 1])[0]
            if rng.random() < 0.05:
                scan_sum = 0
                for segment_page in range(101):
                    page_id = make_page_id(segment, segment_page)
                    while True:
                        try:
                            page = bm.fix_page(page_id, False)
                            break
                        except BufferFullError:
                            pass
                    scan_sum += _read_u64(page)
                    bm.unfix_page(page, False)
                if scan_sum < scan_sums[segment]:
                    with lock:
                        scan_violations.append((segment, scan_sum))
                scan_sums[segment] = scan_sum
                continue

            num_pages = _geometric(rng, 0.5) + 1
            pages = []
            try:
                for _ in range(num_pages - 1):
                    page_id = make_page_id(segment, rng.randint(0, 100))
                    pages.append(bm.fix_page(page_id, False))
                for page in reversed(pages):
                    bm.unfix_page(page, False)
                pages.clear()
                page_id = make_page_id(segment, rng.randint(0, 100))
                if rng.random() < 0.6:
                    page = bm.fix_page(page_id, False)
                    bm.unfix_page(page, False)
                else:
                    page = bm.fix_page(page_id, True)
                    _write_u64(page, _read_u64(page) + 1)
                    bm.unfix_page(page, True)
                    with lock:
                        writes.append(page_id)
            except BufferFullError:
                with lock:
                    aborts.append(i)
            for page in reversed(pages):
                bm.unfix_page(page, False)

    errors = _run_threads(work)
    bm.close()
    assert errors == []
    assert scan_violations == []
    assert len(aborts) < 20

    total = 0
    with BufferManager(PAGE_SIZE, 10, directory=tmp_path) as check:
        for segment in range(4):
            for segment_page in range(101):
                page = check.fix_page(make_page_id(segment, segment_page), False)
                total += _read_u64(page)
                check.unfix_page(page, False)
    assert total == len(writes)