"""
Browser Controller - Playwright-based browser automation for web test cases
"""
from typing import Optional

from playwright.async_api import async_playwright, Browser, Page, BrowserContext

from ..config import settings


class BrowserController:
    """
    Playwright-based browser controller.
    Owns one browser, one context and one page for a single execution.
    """

    def __init__(self):
        self.playwright = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    async def start(self, headless: bool = None):
        """
        Start the browser.

        Args:
            headless: Run in headless mode. Defaults to settings.BROWSER_HEADLESS
        """
        if headless is None:
            headless = settings.BROWSER_HEADLESS

        self.playwright = await async_playwright().start()
        self.browser = await self.playwright.chromium.launch(headless=headless)
        self.context = await self.browser.new_context(viewport={'width': 1280, 'height': 720})
        self.page = await self.context.new_page()
        self.page.set_default_timeout(settings.BROWSER_TIMEOUT)

    async def stop(self):
        """Stop the browser and clean up resources."""
        if self.context:
            await self.context.close()
            self.context = None
        if self.browser:
            await self.browser.close()
            self.browser = None
        if self.playwright:
            await self.playwright.stop()
            self.playwright = None

    async def navigate(self, url: str, wait_until: str = "load"):
        await self.page.goto(url, wait_until=wait_until)

    async def click_text(self, text: str):
        """Click the first element showing ``text``."""
        await self.page.get_by_text(text, exact=False).first.click()

    async def type_text(self, selector: str, text: str):
        """
        Type text into an element.

        Args:
            selector: CSS selector for the input element
            text: Text to type
        """
        await self.page.fill(selector, text)

    async def press_key(self, key: str):
        await self.page.keyboard.press(key)

    async def wait_for_timeout(self, ms: int):
        await self.page.wait_for_timeout(ms)

    async def get_title(self) -> str:
        return await self.page.title()

    async def get_text(self) -> str:
        """Visible text of the page body."""
        return await self.page.inner_text("body")
