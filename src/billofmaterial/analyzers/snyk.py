"""Security score provider backed by the Snyk Advisor package pages."""

import re

from billofmaterial.adapters.base import BaseProvider, ProviderError

# The advisor page renders the package health score as
# <div class="number"><span>95</span>...</div>
SCORE_PATTERN = re.compile(
    r'class="number"[^>]*>\s*<span[^>]*>\s*(\d{1,3})\s*<',
    re.IGNORECASE,
)


class SnykAdvisorProvider(BaseProvider):
    """Scrapes the package health score from https://snyk.io/advisor.

    The score is an integer 0-100. A page without a recognisable score is
    treated as a malformed response.
    """

    ADVISOR_URL = "https://snyk.io/advisor/npm-package"

    @property
    def name(self) -> str:
        return "snyk-advisor"

    async def fetch_security_score(self, package: str) -> int:
        """Fetch the security score for a package.

        Raises:
            ProviderError: If the page cannot be fetched or holds no score.
        """
        html = await self._fetch_text(f"{self.ADVISOR_URL}/{package}", package)
        return parse_security_score(html, package)


def parse_security_score(html: str, package: str) -> int:
    """Extract the 0-100 score from an advisor page."""
    match = SCORE_PATTERN.search(html)
    if not match:
        raise ProviderError("snyk-advisor", package, "no score on advisor page")
    score = int(match.group(1))
    if score > 100:
        raise ProviderError("snyk-advisor", package, f"score out of range: {score}")
    return score
