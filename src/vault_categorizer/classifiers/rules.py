import re
from dataclasses import dataclass

from vault_categorizer.models import RuleMatch, TransactionContext

from .base import Classifier

OTHER_CATEGORY_NAME = "Other"


@dataclass(frozen=True)
class VendorPattern:
    """Keyword with extra matching constraints, for ambiguous words like "shell" or "bar"."""

    keyword: str
    word_boundary: bool = False
    exclude: tuple[str, ...] = ()


VendorKeyword = str | VendorPattern

# Ordered: on equal keyword length the earlier category wins.
DEFAULT_VENDOR_RULES: tuple[tuple[str, tuple[VendorKeyword, ...]], ...] = (
    ("Food & Dining", (
        "mcdonald", "burger king", "wendy", "subway", "starbucks", "dunkin",
        "chipotle", "taco bell", "pizza hut", "domino", "kfc", "panera",
        "five guys", "doordash", "uber eats", "grubhub", "postmates", "zomato",
        "swiggy", "chaayos", "restaurant", "coffee", "cafe", "bakery",
        VendorPattern("bar", word_boundary=True, exclude=("barber",)),
        VendorPattern("pub", word_boundary=True),
    )),
    ("Groceries", (
        "whole foods", "trader joe", "kroger", "safeway", "aldi", "lidl",
        "tesco", "sainsbury", "bigbasket", "blinkit", "zepto", "instacart",
        "grocery", "supermarket",
    )),
    ("Shopping", (
        "amazon", "flipkart", "myntra", "ebay", "etsy", "walmart", "target",
        "costco", "ikea", "best buy", "apple store", "h&m", "zara", "uniqlo",
    )),
    ("Transportation", (
        "uber", "lyft", "ola cabs", "rapido", "metro", "transit", "parking",
        "toll", "fastag", "railway", "irctc",
        VendorPattern("bus", word_boundary=True),
    )),
    ("Gas & Fuel", (
        "chevron", "exxon", "texaco", "bp ", "hpcl", "iocl", "bpcl", "petrol",
        "diesel", "fuel",
        VendorPattern("shell", word_boundary=True, exclude=("hotel", "seashell")),
    )),
    ("Entertainment", (
        "netflix", "hulu", "disney+", "hotstar", "prime video", "steam",
        "playstation", "xbox", "cinema", "pvr", "inox", "bookmyshow",
        "ticketmaster",
    )),
    ("Healthcare", (
        "pharmacy", "cvs", "walgreens", "apollo", "hospital", "clinic",
        "dental", "medical", "1mg", "pharmeasy",
    )),
    ("Utilities", (
        "electric", "water bill", "gas bill", "comcast", "verizon", "at&t",
        "t-mobile", "airtel", "jio", "broadband", "internet",
    )),
    ("Travel", (
        "airbnb", "booking.com", "expedia", "makemytrip", "cleartrip",
        "goibibo", "marriott", "hilton", "hyatt", "airlines", "airways",
        "indigo", "hotel",
    )),
    ("Subscriptions", (
        "spotify", "apple.com/bill", "google storage", "icloud", "dropbox",
        "adobe", "microsoft 365", "youtube premium", "amazon prime",
        "patreon", "subscription",
    )),
    ("Income", (
        "salary", "payroll", "dividend", "interest credit", "refund",
        "cashback",
    )),
    ("Transfers", (
        "transfer", "neft", "imps", "rtgs", "upi", "zelle", "venmo", "paypal",
    )),
    ("Rent & Housing", (
        "rent", "landlord", "property management", "maintenance charges",
        "society",
    )),
    ("Personal Care", (
        "salon", "barber", "spa", "parlour", "parlor", "nykaa", "sephora",
    )),
    ("Fees & Charges", (
        "late fee", "annual fee", "service charge", "overdraft", "finance charge",
        "gst on", "surcharge",
    )),
    ("Insurance", (
        "insurance", "geico", "allstate", "lic ", "premium payment",
    )),
    ("Education", (
        "udemy", "coursera", "tuition", "school", "college", "university",
        "byju",
    )),
    ("Investments", (
        "zerodha", "groww", "vanguard", "fidelity", "robinhood", "mutual fund",
        "sip ",
    )),
)


def normalize_vendor(vendor: str | None) -> str:
    return re.sub(r"\s+", " ", (vendor or "").strip().lower())


def category_slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def keyword_text(keyword: VendorKeyword) -> str:
    return keyword if isinstance(keyword, str) else keyword.keyword


def matches_keyword(vendor: str, keyword: VendorKeyword) -> bool:
    """``vendor`` must already be normalized."""
    if isinstance(keyword, str):
        return keyword.lower() in vendor

    kw = keyword.keyword.lower()
    if keyword.word_boundary:
        pattern = rf"(?:^|[\s\-/,.()]){re.escape(kw)}(?:$|[\s\-/,.()])"
        if vendor != kw and not re.search(pattern, vendor):
            return False
    elif kw not in vendor:
        return False

    return not any(term.lower() in vendor for term in keyword.exclude)


class VendorRuleTable(Classifier):
    def __init__(self, rules: tuple[tuple[str, tuple[VendorKeyword, ...]], ...] = DEFAULT_VENDOR_RULES):
        self.rules = rules

    def category_names(self) -> list[str]:
        return [name for name, _ in self.rules]

    def classify(self, vendor: str, context: TransactionContext | None = None) -> RuleMatch | None:
        normalized = normalize_vendor(vendor)
        if not normalized:
            return None

        best: RuleMatch | None = None
        best_length = 0
        for category_name, keywords in self.rules:
            for keyword in keywords:
                text = keyword_text(keyword)
                # Longer keywords are more specific ("uber eats" beats "uber").
                if len(text) > best_length and matches_keyword(normalized, keyword):
                    best = RuleMatch(category_name=category_name, keyword=text)
                    best_length = len(text)
        return best
