# Copyright (C) 2021 Bloomberg LP
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#  <http://www.apache.org/licenses/LICENSE-2.0>
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


"""
Paged sequences
===============

Lazy sequences over list methods that follow the page token convention:
the request carries ``page_token`` and ``page_size``, the response carries
a repeated items field and ``next_page_token``, empty on the last page.

Every iteration starts over from the initial page token and only fetches
a page once the caller asks for an item beyond the current one. A single
iterator must not be advanced from several threads or tasks at once.
"""

import copy
import logging
from typing import Any, AsyncIterator, Iterator, List, Optional

from gaxcore._exceptions import InvalidArgumentError
from gaxcore.client.api_call import ApiCall
from gaxcore.client.retry import CallSettings


class Page:
    """Items of a single page, along with the token to fetch the next one."""

    def __init__(self, items: List[Any], next_page_token: str):
        self.items = items
        self.next_page_token = next_page_token

    def __iter__(self):
        return iter(self.items)

    def __len__(self):
        return len(self.items)

    def __repr__(self):
        return f"Page(items=[{len(self.items)} item(s)], next_page_token={self.next_page_token!r})"


class _PageState:

    def __init__(self, page_token: str, page_size: int):
        self.page_token = page_token
        self.page_size = page_size
        self.exhausted = False

    def request_for(self, request):
        """Returns a copy of `request` pointing at the current page."""
        if hasattr(request, 'CopyFrom'):
            page_request = type(request)()
            page_request.CopyFrom(request)
        else:
            page_request = copy.copy(request)

        page_request.page_token = self.page_token
        page_request.page_size = self.page_size
        return page_request

    def advance(self, next_page_token: str) -> None:
        if next_page_token:
            self.page_token = next_page_token
        else:
            self.exhausted = True


class _PagedSequenceBase:

    def __init__(self, api_call: ApiCall, request, call_settings: Optional[CallSettings]=None,
                 items_field: str='', page_token: Optional[str]=None, page_size: Optional[int]=None,
                 next_page_token_field: str='next_page_token'):
        if request is None:
            raise InvalidArgumentError("A paged sequence requires a request")
        if not items_field:
            raise InvalidArgumentError("A paged sequence requires the name of the items field")

        # Unset arguments fall back to what the request itself carries:
        if page_token is None:
            page_token = getattr(request, 'page_token', None)
        if page_size is None:
            page_size = getattr(request, 'page_size', None)
        if page_size is not None and page_size < 0:
            raise InvalidArgumentError(f"Page size must not be negative: [{page_size}]")

        self._logger = logging.getLogger(__name__)

        self._api_call = api_call
        self._request = request
        self._call_settings = call_settings
        self._items_field = items_field
        self._next_page_token_field = next_page_token_field
        self._page_token = page_token or ''
        self._page_size = page_size or 0

    @property
    def page_size(self) -> int:
        return self._page_size

    def _new_state(self, page_size: Optional[int]=None) -> _PageState:
        return _PageState(self._page_token, self._page_size if page_size is None else page_size)

    def _advance(self, state: _PageState, response) -> None:
        state.advance(getattr(response, self._next_page_token_field))

        self._logger.debug(f"Fetched page of [{len(getattr(response, self._items_field))}] item(s) "
                           f"from [{self._api_call.method_name}], more pages: [{not state.exhausted}]")

    def _page_from(self, response) -> Page:
        return Page(list(getattr(response, self._items_field)),
                    getattr(response, self._next_page_token_field))

    @staticmethod
    def _validated_page_size(page_size: int) -> int:
        if page_size < 0:
            raise InvalidArgumentError(f"Page size must not be negative: [{page_size}]")
        return page_size


class PagedSequence(_PagedSequenceBase):
    """Blocking paged sequence: iterating it yields every item of every page,
    fetching pages on demand.

    Args:
        api_call (ApiCall): the list method.
        request: the first page's request. It's copied for each page and
            never modified.
        call_settings (CallSettings): per-call overrides applied to every
            page fetch.
        items_field (str): name of the response's repeated items field.
        page_token (str): token to start from; the request's own token, if
            any, when unset.
        page_size (int): requested page size; the request's own size when
            unset. 0 lets the server decide.

    Raises:
        InvalidArgumentError: If `page_size` is negative.
    """

    def __iter__(self) -> Iterator[Any]:
        for response in self.pages():
            yield from getattr(response, self._items_field)

    def pages(self) -> Iterator[Any]:
        """Iterates the raw responses, one per page."""
        state = self._new_state()
        while not state.exhausted:
            response = self._api_call.invoke(state.request_for(self._request), self._call_settings)
            self._advance(state, response)
            yield response

    def read_page(self, page_size: int) -> Page:
        """Fetches the first page with an explicit size.

        Returns:
            Page: its items and the token for the following page, empty if
            there is none.
        """
        state = self._new_state(self._validated_page_size(page_size))
        response = self._api_call.invoke(state.request_for(self._request), self._call_settings)
        self._advance(state, response)
        return self._page_from(response)


class AsyncPagedSequence(_PagedSequenceBase):
    """Asyncio paged sequence, the ``async for`` twin of :class:`PagedSequence`.

    Page fetches suspend the current task; firing the cancellation token of
    `call_settings` stops the next page fetch with :class:`CancelledError`.
    """

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._iterate_items()

    async def _iterate_items(self) -> AsyncIterator[Any]:
        async for response in self.pages():
            for item in getattr(response, self._items_field):
                yield item

    async def pages(self) -> AsyncIterator[Any]:
        """Iterates the raw responses, one per page."""
        state = self._new_state()
        while not state.exhausted:
            response = await self._api_call.invoke_async(state.request_for(self._request),
                                                         self._call_settings)
            self._advance(state, response)
            yield response

    async def read_page(self, page_size: int) -> Page:
        state = self._new_state(self._validated_page_size(page_size))
        response = await self._api_call.invoke_async(state.request_for(self._request),
                                                     self._call_settings)
        self._advance(state, response)
        return self._page_from(response)
