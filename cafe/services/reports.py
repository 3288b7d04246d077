import os
from datetime import timedelta

from jinja2 import Environment, FileSystemLoader

import resources
from cafe.misc import Utilities
from resources.constants import CURRENCY

TEMPLATE_DIR = os.path.dirname(os.path.abspath(resources.__file__))


class ReportRenderer:
    """
    Render the statistics of a period as an HTML document.
    The template lives in the resources directory and is rendered with Jinja2;
    the bot turns the HTML into a PDF.
    """

    template_name = "report_template.html"

    def __init__(self, statistics, template_dir=TEMPLATE_DIR, currency=CURRENCY):
        self.statistics = statistics
        self.currency = currency
        self.env = Environment(loader=FileSystemLoader(template_dir), autoescape=True)
        self.env.filters["money"] = lambda amount: Utilities.format_money(
            amount, self.currency
        )

    def generate_html(self, start=None, end=None):
        """
        Generate the HTML report for [start, end]. Both default to today (UTC),
        and a missing start covers the week up to `end`.
        :return: HTML content as a string.
        """

        now = self.statistics.clock()
        end = end or now.date()
        start = start or (end - timedelta(days=6))

        summary = self.statistics.get_summary(now)
        revenue = self.statistics.get_revenue_summary(start, end)
        usage = self.statistics.get_usage_statistics(start, end)

        template = self.env.get_template(self.template_name)
        return template.render(
            generated_at=Utilities.get_date_str(now),
            start=start,
            end=end,
            summary=summary,
            revenue=revenue,
            usage=usage,
            top_users=[
                {
                    "user_name": user.user_name,
                    "total_time": Utilities.parse_duration_to_human_readable(
                        int(user.total_time.total_seconds())
                    ),
                    "total_spent": user.total_spent,
                }
                for user in usage.top_users
            ],
        )
