# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Saved product lists with debounced, batched persistence.

The lists store holds the whole ``{list_name: [product, ...]}`` mapping
in memory. Every mutation goes through replace(), which swaps the
mapping, queues a change marker and re-arms a debounce timer. When the
timer fires, one write transaction clears the lists table and writes
every list back. Bursts of edits therefore cost a single write.

Product entries are plain dicts:
    {'id': ..., 'fields': {...}, 'notes': [...], 'colorVariants': [...]}

A color variant's position in ``colorVariants`` is its variant index.
Swatches saved for a variant are keyed by that index, so removing a
variant runs a cascade against the swatch store before the splice.
"""

import copy
import json
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from swatchbook.storage import catalog
from swatchbook.storage.accounting import StorageAccounting, calculate_object_size
from swatchbook.storage.debounce import Debouncer
from swatchbook.storage.errors import StorageError
from swatchbook.storage.images import ImagesStore
from swatchbook.storage.kvstore import KeyValueStore
from swatchbook.storage.models import AddResult, CascadeResult, HSLColor, ImageBlob
from swatchbook.storage.ordering import (
    load_order,
    move_name,
    reconcile_order,
    rename_in_order,
    save_order,
)
from swatchbook.storage.pool import ConnectionPool, DatabaseHandle
from swatchbook.storage.schema import DATABASES, LISTS_TABLE, PRODUCT_LISTS_DB
from swatchbook.storage.swatches import SwatchStore

logger = logging.getLogger(__name__)

ListsState = Dict[str, List[Dict[str, Any]]]

# Pending change marker: the next flush clears the table and rewrites all lists
CLEAR_MARKER = 'clear'


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _same_id(a: Any, b: Any) -> bool:
    return str(a) == str(b)


def _find_product_index(products: List[Dict[str, Any]], product_id: Any) -> int:
    for i, product in enumerate(products):
        if _same_id(product.get('id'), product_id):
            return i
    return -1


def _rounded_colors(colors: HSLColor) -> Dict[str, int]:
    return {
        'hue': int(round(colors.hue)),
        'saturation': int(round(colors.saturation)),
        'lightness': int(round(colors.lightness)),
    }


def _same_variant(variant: Mapping[str, Any], colors: Dict[str, int],
                  image_index: Optional[int]) -> bool:
    existing = variant.get('colors') or {}
    try:
        same_colors = all(
            int(round(float(existing[key]))) == colors[key]
            for key in ('hue', 'saturation', 'lightness')
        )
    except (KeyError, TypeError, ValueError):
        return False
    return same_colors and variant.get('imageIndex') == image_index


class ListsStore:
    """In-memory lists mirrored to the lists table.

    Thread-safety: an RLock guards the mapping, the display order and the
    pending-change queue. Only one flush runs at a time; changes made
    while a flush is running wait for the next debounce cycle.

    Attributes:
        is_loading: True until load_all() has succeeded. Nothing is
            flushed while loading, so an early change can never clear
            lists that were not read yet.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        kv: KeyValueStore,
        swatches: SwatchStore,
        images: Optional[ImagesStore] = None,
        accounting: Optional[StorageAccounting] = None,
        debounce_seconds: float = 0.3,
    ):
        """Initialize the store.

        Args:
            pool: Connection pool shared with the other stores.
            kv: Key-value store holding the list display order.
            swatches: Swatch store cascades are issued against.
            images: Images store for the image passthroughs. Created on
                the same pool when omitted.
            accounting: Receives the serialized size after each change.
            debounce_seconds: Quiet period before a batched write.
        """
        self.pool = pool
        self.kv = kv
        self.swatches = swatches
        self.images = images if images is not None else ImagesStore(pool)
        self.accounting = accounting
        self.is_loading = True

        self._schema = DATABASES[PRODUCT_LISTS_DB]
        self._lock = threading.RLock()
        self._save_done = threading.Condition(self._lock)
        # Held across swatch cascades and the splice that follows them.
        # Always taken before self._lock, never after.
        self._cascade_lock = threading.Lock()
        self._state: ListsState = {}
        self._order: List[str] = []
        self._pending: List[str] = []
        self._is_saving = False
        self._debouncer = Debouncer(debounce_seconds)

    def _handle(self) -> DatabaseHandle:
        return self.pool.acquire(self._schema.name, self._schema.version, self._schema.upgrade)

    # =========================================================================
    # State access
    # =========================================================================

    @property
    def state(self) -> ListsState:
        """Deep copy of the current mapping."""
        with self._lock:
            return copy.deepcopy(self._state)

    @property
    def order(self) -> List[str]:
        """List names in display order."""
        with self._lock:
            return list(self._order)

    @property
    def is_saving(self) -> bool:
        with self._lock:
            return self._is_saving

    @property
    def has_pending_changes(self) -> bool:
        with self._lock:
            return bool(self._pending)

    def get_list(self, list_name: str) -> Optional[List[Dict[str, Any]]]:
        with self._lock:
            products = self._state.get(list_name)
            return copy.deepcopy(products) if products is not None else None

    def get_product(self, list_name: str, product_id: Any) -> Optional[Dict[str, Any]]:
        with self._lock:
            products = self._state.get(list_name) or []
            index = _find_product_index(products, product_id)
            return copy.deepcopy(products[index]) if index >= 0 else None

    def ordered_lists(self) -> List[tuple]:
        """(list_name, products) pairs in display order."""
        with self._lock:
            return [(name, copy.deepcopy(self._state[name])) for name in self._order]

    # =========================================================================
    # Load and replace
    # =========================================================================

    def load_all(self) -> ListsState:
        """Read every list in one read transaction.

        Also reconciles the stored display order with the loaded names.
        Rows whose products cannot be decoded are skipped with a warning.

        Returns:
            Copy of the loaded mapping.

        Raises:
            StorageError: If the database cannot be read. The store stays
                in loading state and load_all() can be retried.
        """
        with self._handle().transaction(readonly=True) as cursor:
            cursor.execute(f'SELECT list_name, products FROM {LISTS_TABLE} ORDER BY list_name')
            rows = cursor.fetchall()

        lists: ListsState = {}
        for row in rows:
            try:
                lists[row['list_name']] = json.loads(row['products'])
            except ValueError as e:
                logger.warning(f"Skipping list {row['list_name']!r} with corrupt products: {e}")

        with self._lock:
            self._state = lists
            self._pending.clear()
            self._order = load_order(self.kv, lists.keys())
            self.is_loading = False
            order = list(self._order)
            size = calculate_object_size(lists)

        save_order(self.kv, order)
        if self.accounting is not None:
            self.accounting.record_usage(size)

        logger.info(f"Loaded {len(lists)} lists")
        return copy.deepcopy(lists)

    def replace(self, new_state_or_updater: Union[Mapping[str, List[Dict[str, Any]]],
                                                  Callable[[ListsState], ListsState]]):
        """Replace the whole mapping and queue a batched write.

        Args:
            new_state_or_updater: The new mapping, or a function taking a
                private copy of the current mapping and returning the
                new one.
        """
        with self._lock:
            if callable(new_state_or_updater):
                new_state = new_state_or_updater(copy.deepcopy(self._state))
            else:
                new_state = copy.deepcopy(dict(new_state_or_updater))

            self._state = dict(new_state)
            self._pending.append(CLEAR_MARKER)
            self._order = reconcile_order(self._order, self._state.keys())
            order = list(self._order)
            size = calculate_object_size(self._state)

        save_order(self.kv, order)
        if self.accounting is not None:
            self.accounting.record_usage(size)
        self._schedule_flush()

    # =========================================================================
    # Flush protocol
    # =========================================================================

    def _schedule_flush(self):
        if self.is_loading:
            return
        self._debouncer.schedule(self._flush_pending)

    def _write_lists(self, rows: List[tuple], clear: bool):
        """Write all lists in one transaction, optionally clearing first."""
        with self._handle().transaction() as cursor:
            if clear:
                cursor.execute(f'DELETE FROM {LISTS_TABLE}')
            cursor.executemany(f'''
                INSERT INTO {LISTS_TABLE} (list_name, products) VALUES (?, ?)
                ON CONFLICT(list_name) DO UPDATE SET products = excluded.products
            ''', rows)

    def _flush_pending(self, wait: bool = False) -> bool:
        """Write the pending changes if no other flush is running.

        Args:
            wait: Wait for a running flush instead of leaving the work
                to its follow-up cycle.

        Returns:
            True if nothing was pending or the write succeeded.
        """
        with self._lock:
            while wait and self._is_saving:
                self._save_done.wait()
            if self._is_saving or self.is_loading:
                return False
            if not self._pending:
                return True

            self._is_saving = True
            batch_size = len(self._pending)
            clear = CLEAR_MARKER in self._pending
            rows = [
                (name, json.dumps(products, ensure_ascii=False))
                for name, products in self._state.items()
            ]

        ok = False
        try:
            self._write_lists(rows, clear)
            ok = True
            logger.debug(f"Saved {len(rows)} lists ({batch_size} changes coalesced)")
        except StorageError as e:
            logger.error(f"Error saving lists, will retry: {e}")
        finally:
            with self._lock:
                self._is_saving = False
                if ok:
                    del self._pending[:batch_size]
                follow_up = bool(self._pending)
                self._save_done.notify_all()

        if follow_up:
            self._schedule_flush()
        return ok

    def flush(self) -> bool:
        """Write pending changes now instead of waiting for the timer.

        Returns:
            True if nothing was pending or the write succeeded.
        """
        self._debouncer.cancel()
        return self._flush_pending(wait=True)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no changes are pending and no flush is running.

        Returns:
            False if the timeout expired first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            while self._pending or self._is_saving:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._save_done.wait(remaining)
        return True

    def close(self) -> bool:
        """Cancel the timer and write anything still pending.

        Returns:
            False if changes are left unsaved. No retry is scheduled.
        """
        if self.is_loading:
            self._debouncer.cancel()
            return not self._pending
        saved = self.flush()
        self._debouncer.cancel()
        return saved

    # =========================================================================
    # List operations
    # =========================================================================

    def create_list(self, list_name: str) -> bool:
        """Create an empty list. Returns False for empty or taken names."""
        list_name = (list_name or '').strip()
        with self._lock:
            if not list_name or list_name in self._state:
                return False

            def updater(prev: ListsState) -> ListsState:
                prev[list_name] = []
                return prev

            self.replace(updater)
        return True

    def delete_list(self, list_name: str) -> bool:
        """Delete a list and its products. Swatch cleanup is best-effort."""
        with self._cascade_lock:
            with self._lock:
                if list_name not in self._state:
                    return False

                def updater(prev: ListsState) -> ListsState:
                    prev.pop(list_name, None)
                    return prev

                self.replace(updater)

            try:
                self.swatches.delete_by_list(list_name)
            except StorageError as e:
                logger.error(f"Failed to delete swatches of deleted list {list_name!r}: {e}")
        return True

    def rename_list(self, old_name: str, new_name: str) -> bool:
        """Rename a list, keeping its place in the display order.

        Returns:
            False if the new name is empty, unchanged or already used.
        """
        new_name = (new_name or '').strip()
        with self._cascade_lock:
            with self._lock:
                if (old_name not in self._state or not new_name
                        or new_name == old_name or new_name in self._state):
                    return False

                self._order = rename_in_order(self._order, old_name, new_name)

                def updater(prev: ListsState) -> ListsState:
                    return {(new_name if k == old_name else k): v for k, v in prev.items()}

                self.replace(updater)

            try:
                self.swatches.rename_list(old_name, new_name)
            except StorageError as e:
                logger.error(f"Failed to move swatches from {old_name!r} to {new_name!r}: {e}")
        return True

    def move_list(self, list_name: str, new_position: int) -> bool:
        """Move a list within the display order (drag-reorder)."""
        with self._lock:
            if list_name not in self._state:
                return False
            self._order = move_name(self._order, list_name, new_position)
            order = list(self._order)
        save_order(self.kv, order)
        return True

    # =========================================================================
    # Product operations
    # =========================================================================

    def add_to_list(
        self,
        list_name: str,
        product: Mapping[str, Any],
        colors: Any,
        image_url: Optional[str] = None,
        image_index: Optional[int] = None,
        allow_duplicate: bool = False,
    ) -> AddResult:
        """Add a color variant of a catalog product to a list.

        The variant is appended to the product's entry, or a new entry is
        appended when the product is not in the list yet. Colors are
        rounded to whole numbers. A variant whose colors and image index
        match an existing one is reported as DUPLICATE and skipped unless
        allow_duplicate is set.

        Args:
            list_name: Target list.
            product: Catalog product dict with at least an 'id'.
            colors: HSLColor, dict or 3-tuple.
            image_url: Source image, processed later by
                process_pending_variants().
            image_index: Position of the image among the product's images.
            allow_duplicate: Add even if an identical variant exists.

        Returns:
            What happened, as an AddResult.

        Raises:
            ValueError: If the product has no 'id'.
        """
        product_id = product.get('id')
        if product_id is None:
            raise ValueError("product has no 'id'")
        rounded = _rounded_colors(HSLColor.coerce(colors))
        variant = {
            'colors': rounded,
            'originalImageUrl': image_url,
            'imageIndex': image_index,
            'timestamp': _now_iso(),
        }

        with self._lock:
            products = self._state.get(list_name)
            if products is None:
                return AddResult.NO_SUCH_LIST

            index = _find_product_index(products, product_id)
            if index >= 0:
                existing = products[index].get('colorVariants') or []
                if not allow_duplicate and any(
                        _same_variant(v, rounded, image_index) for v in existing):
                    return AddResult.DUPLICATE
                result = AddResult.ADDED_VARIANT
            else:
                result = AddResult.ADDED_PRODUCT

            def updater(prev: ListsState) -> ListsState:
                items = prev[list_name]
                i = _find_product_index(items, product_id)
                if i >= 0:
                    entry = items[i]
                    entry['colorVariants'] = list(entry.get('colorVariants') or []) + [variant]
                else:
                    entry = copy.deepcopy(dict(product))
                    entry['id'] = product_id
                    entry['colorVariants'] = [variant]
                    items.append(entry)
                return prev

            self.replace(updater)
        return result

    def remove_from_list(self, list_name: str, product_id: Any) -> bool:
        """Remove a product from a list along with its swatches."""
        with self._cascade_lock:
            with self._lock:
                products = self._state.get(list_name)
                if products is None or _find_product_index(products, product_id) < 0:
                    return False

                def updater(prev: ListsState) -> ListsState:
                    prev[list_name] = [
                        p for p in prev[list_name] if not _same_id(p.get('id'), product_id)
                    ]
                    return prev

                self.replace(updater)

            try:
                self.swatches.delete_by_product(list_name, product_id)
            except StorageError as e:
                logger.error(
                    f"Failed to delete swatches of removed product {list_name}/{product_id}: {e}"
                )
        return True

    def _update_product(self, list_name: str, product_id: Any,
                        change: Callable[[Dict[str, Any]], Any]) -> Any:
        """Apply change() to a copy of one product and queue the write.

        Returns:
            Whatever change() returned.

        Raises:
            KeyError: If the list or product does not exist.
        """
        outcome = {}

        def updater(prev: ListsState) -> ListsState:
            items = prev.get(list_name)
            if items is None:
                raise KeyError(f"No list named {list_name!r}")
            i = _find_product_index(items, product_id)
            if i < 0:
                raise KeyError(f"No product {product_id!r} in list {list_name!r}")
            outcome['value'] = change(items[i])
            return prev

        self.replace(updater)
        return outcome.get('value')

    def set_variant_colors(self, list_name: str, product_id: Any,
                           variant_index: int, colors: Any) -> bool:
        """Change a variant's colors and bump its timestamp."""
        color = HSLColor.coerce(colors)

        def change(product: Dict[str, Any]) -> bool:
            variants = product.get('colorVariants') or []
            if not 0 <= variant_index < len(variants):
                return False
            variants[variant_index] = dict(
                variants[variant_index],
                colors=color.to_dict(),
                timestamp=_now_iso(),
            )
            product['colorVariants'] = variants
            return True

        return bool(self._update_product(list_name, product_id, change))

    # =========================================================================
    # Notes
    # =========================================================================

    def update_notes(self, list_name: str, product_id: Any, notes: List[Dict[str, Any]]):
        """Replace a product's notes."""
        notes = copy.deepcopy(list(notes))

        def change(product: Dict[str, Any]):
            product['notes'] = notes

        self._update_product(list_name, product_id, change)

    def add_note(self, list_name: str, product_id: Any, text: str) -> Optional[Dict[str, Any]]:
        """Append a note. Blank text is ignored and returns None."""
        text = (text or '').strip()
        if not text:
            return None

        def change(product: Dict[str, Any]) -> Dict[str, Any]:
            notes = product.get('notes') or []
            note_id = int(time.time() * 1000)
            existing_ids = {n.get('id') for n in notes}
            while note_id in existing_ids:
                note_id += 1
            now = _now_iso()
            note = {'id': note_id, 'text': text, 'timestamp': now, 'lastModified': now}
            product['notes'] = notes + [note]
            return dict(note)

        return self._update_product(list_name, product_id, change)

    def edit_note(self, list_name: str, product_id: Any, note_id: int, text: str) -> bool:
        text = (text or '').strip()
        if not text:
            return False

        def change(product: Dict[str, Any]) -> bool:
            for note in product.get('notes') or []:
                if note.get('id') == note_id:
                    note['text'] = text
                    note['lastModified'] = _now_iso()
                    return True
            return False

        return bool(self._update_product(list_name, product_id, change))

    def delete_note(self, list_name: str, product_id: Any, note_id: int) -> bool:
        def change(product: Dict[str, Any]) -> bool:
            notes = product.get('notes') or []
            kept = [n for n in notes if n.get('id') != note_id]
            product['notes'] = kept
            return len(kept) != len(notes)

        return bool(self._update_product(list_name, product_id, change))

    # =========================================================================
    # Variant removal cascade
    # =========================================================================

    def remove_color_variant(self, list_name: str, product_id: Any,
                             variant_index: int) -> CascadeResult:
        """Remove a color variant and keep swatches aligned with it.

        Steps, in order:
            1. Delete the swatches saved for the removed variant.
            2. Shift swatches of later variants down by one index.
            3. Splice the variant out of the product.
            4. Drop the product when no variants remain.

        Steps 1 and 2 finish before the splice is queued. A failure in
        either is logged and reported in the result, and the splice still
        goes ahead. Cascades run one at a time, so a second removal is
        validated against the indices the first one left behind.

        Raises:
            ValueError: If the list, product or variant does not exist.
                Nothing is changed in that case.
        """
        with self._cascade_lock:
            with self._lock:
                products = self._state.get(list_name)
                if products is None:
                    raise ValueError(f"No list named {list_name!r}")
                index = _find_product_index(products, product_id)
                if index < 0:
                    raise ValueError(f"No product {product_id!r} in list {list_name!r}")
                variants = products[index].get('colorVariants') or []
                if not 0 <= variant_index < len(variants):
                    raise ValueError(
                        f"Variant index {variant_index} out of range for product {product_id!r}"
                    )

            deleted_ok = True
            try:
                self.swatches.delete_by_variant(list_name, product_id, variant_index)
            except StorageError as e:
                deleted_ok = False
                logger.error(
                    f"Swatch cascade: delete failed for {list_name}/{product_id}/{variant_index}: {e}"
                )

            renumbered_ok = True
            try:
                self.swatches.renumber_from(list_name, product_id, variant_index + 1)
            except StorageError as e:
                renumbered_ok = False
                logger.error(
                    f"Swatch cascade: renumber failed for {list_name}/{product_id} "
                    f"after index {variant_index}: {e}"
                )

            def updater(prev: ListsState) -> ListsState:
                items = []
                for item in prev.get(list_name, []):
                    if _same_id(item.get('id'), product_id):
                        remaining = list(item.get('colorVariants') or [])
                        if variant_index < len(remaining):
                            del remaining[variant_index]
                        if not remaining:
                            continue
                        item['colorVariants'] = remaining
                    items.append(item)
                prev[list_name] = items
                return prev

            self.replace(updater)
            return CascadeResult(deleted_ok=deleted_ok, renumbered_ok=renumbered_ok)

    # =========================================================================
    # Image processing of pending variants
    # =========================================================================

    def process_pending_variants(self, processor) -> int:
        """Render variants that still only carry their source image URL.

        For every such variant the processor produces the downsized image
        and the recolored rendering, and the source URL is dropped.
        Variants whose processing fails are left pending. All updates are
        queued with a single replace().

        Args:
            processor: Object with process_image(source) and
                create_variant(image, colors), e.g. ImageProcessor.

        Returns:
            Number of variants processed.
        """
        snapshot = self.state
        rendered = {}
        for list_name, products in snapshot.items():
            for product in products:
                for i, variant in enumerate(product.get('colorVariants') or []):
                    source = variant.get('originalImageUrl')
                    if not source or variant.get('processedImage'):
                        continue
                    processed = processor.process_image(source)
                    if not processed:
                        continue
                    variant_image = processor.create_variant(processed, variant.get('colors') or {})
                    rendered[(list_name, str(product.get('id')), i, source)] = (
                        processed, variant_image
                    )

        if not rendered:
            return 0

        applied = {'count': 0}

        def updater(prev: ListsState) -> ListsState:
            for list_name, products in prev.items():
                for product in products:
                    for i, variant in enumerate(product.get('colorVariants') or []):
                        key = (list_name, str(product.get('id')), i,
                               variant.get('originalImageUrl'))
                        if key not in rendered or variant.get('processedImage'):
                            continue
                        processed, variant_image = rendered[key]
                        variant['processedImage'] = processed
                        variant['variantImage'] = variant_image
                        del variant['originalImageUrl']
                        applied['count'] += 1
            return prev

        self.replace(updater)
        logger.info(f"Processed {applied['count']} pending color variants")
        return applied['count']

    # =========================================================================
    # Browsing
    # =========================================================================

    def categories(self) -> List[str]:
        with self._lock:
            return catalog.collect_categories(self._state)

    def search(self, term: str = '', category: str = catalog.ALL_CATEGORIES) -> ListsState:
        """Filter lists by search term and category. See catalog.filter_lists()."""
        with self._lock:
            return copy.deepcopy(catalog.filter_lists(self._state, term, category))

    def item_count(self) -> int:
        with self._lock:
            return sum(len(products) for products in self._state.values())

    # =========================================================================
    # Image passthroughs
    # =========================================================================

    def save_images(self, images) -> List[str]:
        return self.images.put_many(images)

    def save_image(self, image_id: str, data: Optional[str]) -> Optional[str]:
        return self.images.save_image(image_id, data)

    def get_images(self, image_ids) -> List[ImageBlob]:
        return self.images.get_many(image_ids)

    def get_image(self, image_id: str) -> Optional[str]:
        return self.images.get_image(image_id)

    def delete_images(self, image_ids) -> List[bool]:
        return self.images.delete_many(image_ids)

    def delete_image(self, image_id: str) -> bool:
        return self.images.delete_image(image_id)
