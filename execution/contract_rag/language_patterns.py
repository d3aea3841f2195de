"""
Multilingual Pattern Definitions for Contract RAG

All regex patterns, keyword tables, prompt templates, and user-facing labels
organized by language. Modules import from here instead of defining patterns
inline.

Keyword weights are calibration constants, not derived values; every
classifier that reads them lets callers override its thresholds.
"""

# =============================================================================
# Document Type Detection (ingestion)
# =============================================================================

LEGAL_TERMS = {
    "en": [
        "whereas", "party", "parties", "agreement", "contract", "shall", "herein",
        "liability", "clause", "provision", "terms", "conditions", "jurisdiction",
        "breach", "terminate", "indemnify", "covenant", "consideration",
    ],
    "he": [
        "הסכם", "חוזה", "צד", "צדדים", "הצדדים", "תנאי", "תנאים", "הוראות",
        "אחריות", "חובות", "זכויות", "התחייבות", "התחייבויות", "סיום", "ביטול",
        "פיצוי", "פיצויים", "שיפוי", "נזק", "נזקים", "הפרה", "מוסכם", "בתוקף",
    ],
}

# Minimum distinct legal terms before a text counts as a contract
LEGAL_TERM_THRESHOLDS = {"en": 4, "he": 3}

# =============================================================================
# Structural Boundary Markers (chunker, legal documents only)
# =============================================================================

# Language-neutral markers: numbering and layout, no vocabulary
STRUCTURAL_MARKERS = [
    r"^[ \t]*\d+(?:\.\d+)*[.)][ \t]+\S",            # 1. / 2.3) numbered sections
    r"^[ \t]*\([a-zA-Z]\)[ \t]+\S",                # (a) lettered sub-clauses
    r"^[ \t]*\(\d+\)[ \t]+\S",                     # (1) numbered sub-clauses
    r"^[ \t]*\([ivxlc]+\)[ \t]+\S",                # (iv) roman sub-clauses
    r"^[ \t]*[A-Z][A-Z0-9 ,&'\-]{3,}[ \t]*$",      # ALL-CAPS HEADER
]

# Heading words that introduce an article or section, per language
SECTION_HEADINGS = {
    "en": [
        r"^[ \t]*(?:ARTICLE|Article|SECTION|Section|CLAUSE|Clause|§)[ \t]*[IVXLC\d]+",
        r"^[ \t]*(?:WHEREAS|NOW,? THEREFORE|IN WITNESS WHEREOF)\b",
    ],
    "he": [
        r"^[ \t]*(?:סעיף|פרק|נספח)[ \t]+[\dא-ת]+",
        r"^[ \t]*(?:הואיל|לפיכך)",
    ],
    "ar": [
        r"^[ \t]*(?:المادة|البند|الفصل)[ \t]+[\d٠-٩]+",
        r"^[ \t]*(?:حيث إن|وعليه)",
    ],
}

# Sentence terminators across scripts: Latin, Arabic, Armenian, Devanagari,
# Ethiopic, Khmer, Hebrew sof pasuq, CJK full-width, ellipsis
SENTENCE_TERMINATORS = ".!?؟۔։।॥።፧។៕׃。！？…"

# =============================================================================
# Entity Patterns (local entity detector)
# =============================================================================

_MONTHS_EN = (
    r"(?:January|February|March|April|May|June|July|August|September|"
    r"October|November|December)"
)

ENTITY_PATTERNS = {
    "amount": [
        r"(?:[$€£₪]|USD|EUR|GBP|ILS|NIS)\s?\d{1,3}(?:[,.]\d{3})*(?:[.,]\d{1,2})?(?:\s?(?:million|billion))?",
        r"\d{1,3}(?:[,.]\d{3})*(?:[.,]\d{1,2})?\s?(?:USD|EUR|GBP|ILS|NIS|dollars|euros|₪|ש\"ח|שקלים)",
    ],
    "date": [
        _MONTHS_EN + r"\s+\d{1,2},?\s+\d{4}",
        r"\d{1,2}\s+" + _MONTHS_EN + r",?\s+\d{4}",
        r"\b\d{1,2}[./-]\d{1,2}[./-]\d{2,4}\b",
        r"\b\d{4}-\d{2}-\d{2}\b",
    ],
    "organization": [
        r"\b(?:[A-Z][A-Za-z&]+\s){1,4}(?:Inc|LLC|Corp|Corporation|Company|Ltd|Limited|GmbH|S\.A)\.?(?=\W|$)",
        r"[א-ת\"']+(?:\s[א-ת\"']+){0,4}\sבע\"מ",
    ],
    "clause": [
        r"\b(?:Section|Article|Clause|Paragraph)\s+[IVXLC\d]+(?:\.\d+)*(?:\([a-z]\))?",
        r"סעיף\s+\d+(?:\.\d+)*",
        r"المادة\s+\d+",
    ],
    "person": [
        r"\b(?:Mr|Mrs|Ms|Dr|Adv)\.\s+[A-Z][a-z]+(?:\s[A-Z][a-z]+)?",
    ],
}

# =============================================================================
# Chunk Metadata Patterns (parties / clause type / dates)
# =============================================================================

PARTY_PATTERN = (
    r"\b([A-Z][a-z]+(?: [A-Z][a-z]+)*(?:,? (?:Inc|LLC|Corp|Company|Ltd))?)"
    r"(?= shall| agrees?| hereby)"
)

DATE_PATTERN = _MONTHS_EN + r"\s+\d{1,2},?\s+\d{4}"

CLAUSE_TYPE_KEYWORDS = [
    ("termination", ["termination", "terminate", "סיום", "ביטול", "إنهاء"]),
    ("payment", ["payment", "compensation", "תשלום", "תמורה", "دفع"]),
    ("liability", ["liability", "indemnif", "אחריות", "שיפוי", "مسؤولية"]),
    ("confidentiality", ["confidential", "non-disclosure", "סודיות", "سرية"]),
]

# =============================================================================
# Query Type Detection (orchestrator)
# =============================================================================

# Ordered: first type with a hit wins, "general" otherwise
QUERY_TYPE_KEYWORDS = [
    ("parties", {
        "en": ["parties", "party", "who", "entity", "company", "signator"],
        "he": ["צדדים", "הצדדים", "מי", "חברה", "צד"],
        "ar": ["الأطراف", "الطرف", "شركة"],
    }),
    ("payment", {
        "en": ["payment", "pay", "money", "cost", "fee", "price", "invoice"],
        "he": ["תשלום", "כסף", "עלות", "עמלה", "מחיר"],
        "ar": ["دفع", "مال", "تكلفة", "رسوم", "سعر"],
    }),
    ("dates", {
        "en": ["date", "when", "deadline", "expire", "duration"],
        "he": ["תאריך", "מתי", "מועד", "תוקף"],
        "ar": ["تاريخ", "متى", "موعد", "مدة"],
    }),
    ("termination", {
        "en": ["terminate", "termination", "end the", "cancel"],
        "he": ["סיום", "ביטול", "לבטל", "להפסיק"],
        "ar": ["إنهاء", "إلغاء", "فسخ"],
    }),
    ("liability", {
        "en": ["liability", "liable", "responsible", "indemnif", "damages"],
        "he": ["אחריות", "שיפוי", "נזק", "פיצוי"],
        "ar": ["مسؤولية", "تعويض", "ضرر"],
    }),
    ("confidentiality", {
        "en": ["confidential", "secret", "disclosure", "nda", "privacy"],
        "he": ["סודיות", "סודי", "גילוי"],
        "ar": ["سرية", "سري", "إفصاح"],
    }),
    ("terms", {
        "en": ["term", "condition", "clause", "provision", "obligation"],
        "he": ["תנאי", "סעיף", "הוראה", "התחייבות"],
        "ar": ["شرط", "بند", "التزام"],
    }),
]

# Question shapes that call for analysis rather than lookup
ANALYTICAL_PATTERNS = {
    "en": [
        r"^(explain|analyze|analyse|compare|contrast|evaluate|assess|review)\b",
        r"^why\s+",
        r"\b(implications?|consequences?|impact|risks?)\b",
        r"\b(relationship|difference|similarity)\s+(between|among)\b",
        r"\b(pros?\s+and\s+cons?|advantages?\s+and\s+disadvantages?)\b",
    ],
    "he": [
        r"^(הסבר|נתח|השווה|העריך)",
        r"^למה\s+",
        r"(השלכות|סיכונים|השפעה)",
    ],
    "ar": [
        r"^(اشرح|حلل|قارن|قيّم)",
        r"^لماذا\s+",
        r"(عواقب|مخاطر|تأثير)",
    ],
}

# =============================================================================
# Contract Type Classification (weighted bag of patterns)
# =============================================================================

CONTRACT_TYPE_PATTERNS = {
    "employment": {
        "en": [(r"\bemploy(?:ee|er|ment)\b", 2), (r"\bsalary\b", 2), (r"\bvacation\b", 1), (r"\bnon-compete\b", 1)],
        "he": [(r"עובד", 2), (r"מעביד|מעסיק", 2), (r"משכורת|שכר", 2), (r"חופשה", 1)],
        "ar": [(r"موظف", 2), (r"صاحب العمل", 2), (r"راتب", 2)],
    },
    "lease": {
        "en": [(r"\b(?:landlord|lessor)\b", 2), (r"\b(?:tenant|lessee)\b", 2), (r"\brent\b", 2), (r"\bpremises\b", 1)],
        "he": [(r"משכיר", 2), (r"שוכר", 2), (r"שכירות|דמי שכירות", 2), (r"מושכר", 1)],
        "ar": [(r"المؤجر", 2), (r"المستأجر", 2), (r"إيجار", 2)],
    },
    "nda": {
        "en": [(r"\bconfidential information\b", 3), (r"\bnon-disclosure\b", 3), (r"\brecipient\b", 1), (r"\bdisclosing party\b", 2)],
        "he": [(r"סודיות", 3), (r"מידע סודי", 3), (r"אי גילוי", 2)],
        "ar": [(r"معلومات سرية", 3), (r"عدم الإفصاح", 3)],
    },
    "service": {
        "en": [(r"\bservices?\b", 1), (r"\bservice provider\b", 2), (r"\bstatement of work\b", 2), (r"\bservice level\b", 2)],
        "he": [(r"שירותים", 1), (r"נותן השירות|ספק", 2)],
        "ar": [(r"خدمات", 1), (r"مقدم الخدمة", 2)],
    },
    "sales": {
        "en": [(r"\b(?:buyer|purchaser)\b", 2), (r"\bseller\b", 2), (r"\bpurchase price\b", 2), (r"\bdelivery\b", 1)],
        "he": [(r"קונה|רוכש", 2), (r"מוכר", 2), (r"מחיר הרכישה|תמורה", 2)],
        "ar": [(r"المشتري", 2), (r"البائع", 2), (r"ثمن", 1)],
    },
    "loan": {
        "en": [(r"\b(?:lender|borrower)\b", 2), (r"\bprincipal\b", 2), (r"\binterest rate\b", 2), (r"\brepay", 1)],
        "he": [(r"מלווה|לווה", 2), (r"הלוואה", 2), (r"ריבית", 2)],
        "ar": [(r"المقرض|المقترض", 2), (r"قرض", 2), (r"فائدة", 2)],
    },
    "license": {
        "en": [(r"\blicen[cs]or\b", 2), (r"\blicen[cs]ee\b", 2), (r"\broyalt(?:y|ies)\b", 2), (r"\bintellectual property\b", 1)],
        "he": [(r"רישיון", 2), (r"תמלוגים", 2), (r"קניין רוחני", 1)],
        "ar": [(r"ترخيص", 2), (r"إتاوات", 2)],
    },
    "partnership": {
        "en": [(r"\bpartners?(?:hip)?\b", 2), (r"\bprofit shar", 2), (r"\bcapital contribution", 2)],
        "he": [(r"שותפות|שותף", 2), (r"חלוקת רווחים", 2)],
        "ar": [(r"شراكة|شريك", 2), (r"تقاسم الأرباح", 2)],
    },
}

# =============================================================================
# Risk Scoring (weighted bag of patterns)
# =============================================================================

RISK_PATTERNS = {
    "en": [
        (r"\bunlimited liability\b", 4),
        (r"\bliquidated damages\b", 3),
        (r"\bpenalt(?:y|ies)\b", 2),
        (r"\bindemnif", 2),
        (r"\bautomatic(?:ally)? renew", 2),
        (r"\bnon-compete\b", 2),
        (r"\bwaive[sd]?\b", 2),
        (r"\bsole discretion\b", 2),
        (r"\bterminate (?:immediately|without notice)\b", 3),
        (r"\bexclusiv(?:e|ity)\b", 1),
        (r"\bjoint and several\b", 3),
        (r"\bpersonal guarantee\b", 3),
    ],
    "he": [
        (r"אחריות בלתי מוגבלת", 4),
        (r"פיצוי מוסכם", 3),
        (r"קנס|קנסות", 2),
        (r"שיפוי", 2),
        (r"חידוש אוטומטי", 2),
        (r"אי תחרות", 2),
        (r"ויתור", 2),
        (r"שיקול דעתו הבלעדי", 2),
        (r"ערבות אישית", 3),
    ],
    "ar": [
        (r"مسؤولية غير محدودة", 4),
        (r"تعويضات مقطوعة", 3),
        (r"غرامة|غرامات", 2),
        (r"تعويض", 2),
        (r"تجديد تلقائي", 2),
        (r"عدم المنافسة", 2),
        (r"تنازل", 2),
        (r"كفالة شخصية", 3),
    ],
}

# =============================================================================
# User-Facing Labels
# =============================================================================

LABELS = {
    "en": {
        "no_results": (
            "I don't find any relevant information in your uploaded documents for this "
            "query. Please make sure you have uploaded documents that contain information "
            "related to your question."
        ),
        "fallback": (
            "I encountered an error generating a detailed response, but I found {count} "
            "relevant sections in your documents. {hint}"
        ),
        "fallback_hint_credentials": "Please check your API key configuration.",
        "fallback_hint_default": "Please try rephrasing your question.",
        "document": "Document",
        "chunk": "chunk",
        "match": "match",
    },
    "he": {
        "no_results": (
            "לא מצאתי מידע רלוונטי במסמכים שהועלו עבור שאלה זו. "
            "אנא ודא שהעלית מסמכים המכילים מידע הקשור לשאלתך."
        ),
        "fallback": (
            "אירעה שגיאה ביצירת תשובה מפורטת, אך מצאתי {count} קטעים רלוונטיים "
            "במסמכים שלך. {hint}"
        ),
        "fallback_hint_credentials": "אנא בדוק את הגדרות מפתח ה-API.",
        "fallback_hint_default": "אנא נסה לנסח את שאלתך מחדש.",
        "document": "מסמך",
        "chunk": "קטע",
        "match": "התאמה",
    },
    "ar": {
        "no_results": (
            "لم أجد أي معلومات ذات صلة في المستندات التي قمت بتحميلها لهذا السؤال. "
            "يرجى التأكد من تحميل مستندات تحتوي على معلومات متعلقة بسؤالك."
        ),
        "fallback": (
            "حدث خطأ أثناء إنشاء إجابة مفصلة، لكنني وجدت {count} مقاطع ذات صلة "
            "في مستنداتك. {hint}"
        ),
        "fallback_hint_credentials": "يرجى التحقق من إعدادات مفتاح API.",
        "fallback_hint_default": "يرجى إعادة صياغة سؤالك.",
        "document": "مستند",
        "chunk": "مقطع",
        "match": "تطابق",
    },
}

CONFIDENCE_EXPLANATIONS = {
    "HIGH": "Strong, relevant evidence was found in your documents.",
    "MEDIUM": "Relevant evidence was found, but coverage may be incomplete.",
    "LOW": "Only weak or partial evidence was found; verify against the source text.",
    "MINIMAL": "Little supporting evidence was found; treat this answer with caution.",
    "NO_RESULTS": "No relevant sections were found in your documents.",
}

# =============================================================================
# Prompt Templates
# =============================================================================

QUERY_TYPE_INSTRUCTIONS = {
    "general": "Answer the user's question comprehensively using the document context.",
    "parties": "Identify and analyze the parties mentioned in the contracts, their roles, and relationships.",
    "terms": "Focus on contract terms, conditions, and key provisions.",
    "dates": "Identify and analyze important dates, deadlines, and time-sensitive clauses.",
    "liability": "Analyze liability, indemnification, and risk allocation clauses.",
    "termination": "Focus on termination conditions, notice requirements, and end-of-contract provisions.",
    "payment": "Analyze payment terms, amounts, schedules, and financial obligations.",
    "confidentiality": "Focus on confidentiality, non-disclosure, and privacy provisions.",
}

PROMPT_TEMPLATES = {
    "minimal": (
        "Answer briefly using ONLY the document context below. "
        "Cite sources as [S1], [S2]. If the answer is not in the context, say so.\n\n"
        "TASK: {instruction}\n\n"
        "DOCUMENT CONTEXT:\n{context}\n\n"
        "QUESTION: {query}"
    ),
    "full": (
        "Use ONLY the document context below. Work through these steps:\n"
        "1) IDENTIFY the provisions relevant to the question\n"
        "2) INTERPRET what each provision says\n"
        "3) ANALYZE how the provisions interact\n"
        "4) ASSESS practical implications and risks (contract type: {contract_type}, "
        "risk level: {risk_level})\n"
        "5) CITE every statement with its source id, e.g. [S1]\n"
        "If information isn't in the context, clearly state that it does not appear "
        "in the uploaded documents. Respond in the same language as the question.\n\n"
        "TASK: {instruction}\n\n"
        "DOCUMENT CONTEXT:\n{context}\n\n"
        "QUESTION: {query}"
    ),
}

DEFAULT_PERSONAS = {
    "legal_advisor": (
        "You are a contract analyst. Base every statement on the user's uploaded "
        "documents and keep legal facts separate from opinion."
    ),
    "legal_writer": (
        "You are a contract drafting assistant. Suggest clearer wording and missing "
        "provisions, grounded in the user's uploaded documents."
    ),
}

# =============================================================================
# Follow-up Question Templates
# =============================================================================

FOLLOW_UP_QUESTIONS = {
    "contract_type": {
        "employment": ["What are the non-compete or non-solicitation obligations?"],
        "lease": ["What are the rent escalation and renewal terms?"],
        "nda": ["How long do the confidentiality obligations last?"],
        "service": ["What service levels and remedies are defined?"],
        "sales": ["When does title and risk pass to the buyer?"],
        "loan": ["What events of default are defined?"],
        "license": ["What restrictions apply to the licensed rights?"],
        "partnership": ["How are profits and losses allocated?"],
    },
    "query_type": {
        "parties": ["What obligations does each party have?"],
        "payment": ["What happens if a payment is late?"],
        "dates": ["Are there any automatic renewal deadlines?"],
        "termination": ["What notice period is required to terminate?"],
        "liability": ["Is there a cap on liability?"],
        "confidentiality": ["What information is excluded from confidentiality?"],
        "terms": ["Which provisions survive termination?"],
        "general": ["What are the key obligations in this document?"],
    },
    "risk": {
        "HIGH": ["Which clauses carry the highest risk and how could they be mitigated?"],
        "MEDIUM": ["Are there any one-sided provisions worth renegotiating?"],
    },
}
