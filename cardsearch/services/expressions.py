# services/expressions.py
"""
Expression Parsers
------------------
1. Boolean tag expressions: AND/OR/NOT (or & | !), parentheses, bare or
   quoted tags. Shunting-yard to postfix, evaluated with a stack machine.
   Precedence NOT(3) > AND(2) > OR(1), left-associative.
2. Weight assignments: weight("tag") = 0.3; weight('other') = 2.0
3. Tag bundles: "multi word", other, 'third one'

None of these raise on malformed input. Unmatched parens are absorbed,
missing operands read as False and bad weight segments are skipped.
"""

import math
import re
from typing import Dict, List, NamedTuple, Optional

from cardsearch.utils.text import normalize_tag

TAG = "TAG"
AND = "AND"
OR = "OR"
NOT = "NOT"
LPAREN = "("
RPAREN = ")"

PRECEDENCE = {NOT: 3, AND: 2, OR: 1}
_SYMBOLS = {"!": NOT, "&": AND, "|": OR}
_WORD_STOP = re.compile(r"[\s()!&|]")

_WEIGHT_RE = re.compile(
    r"""weight\s*\(\s*(?:"([^"]+)"|'([^']+)')\s*\)\s*=\s*([-+]?\d*\.?\d+(?:[eE][-+]?\d+)?)"""
)
_BUNDLE_RE = re.compile(r""""([^"]+)"|'([^']+)'|([^,\s][^,]*)""")


class Token(NamedTuple):
    type: str
    value: Optional[str] = None


def tokenize_expression(text: str) -> List[Token]:
    s = str(text or "")
    tokens = []
    i = 0
    while i < len(s):
        ch = s[i]
        if ch.isspace():
            i += 1
            continue
        if ch in "\"'":
            end = s.find(ch, i + 1)
            if end < 0:
                end = len(s)
            tokens.append(Token(TAG, normalize_tag(s[i + 1:end])))
            i = end + 1
            continue
        if ch in "()":
            tokens.append(Token(ch))
            i += 1
            continue
        if ch in _SYMBOLS:
            tokens.append(Token(_SYMBOLS[ch]))
            i += 1
            continue
        m = _WORD_STOP.search(s, i)
        j = m.start() if m else len(s)
        word = s[i:j]
        upper = word.upper()
        if upper in PRECEDENCE:
            tokens.append(Token(upper))
        else:
            tokens.append(Token(TAG, normalize_tag(word)))
        i = j
    return tokens


def to_postfix(tokens: List[Token]) -> List[Token]:
    out = []
    ops = []
    for t in tokens:
        if t.type == TAG:
            out.append(t)
        elif t.type in PRECEDENCE:
            while ops and ops[-1].type in PRECEDENCE and PRECEDENCE[ops[-1].type] >= PRECEDENCE[t.type]:
                out.append(ops.pop())
            ops.append(t)
        elif t.type == LPAREN:
            ops.append(t)
        elif t.type == RPAREN:
            while ops and ops[-1].type != LPAREN:
                out.append(ops.pop())
            if ops:
                ops.pop()
    while ops:
        op = ops.pop()
        if op.type != LPAREN:
            out.append(op)
    return out


class BoolExpr:
    """A parsed boolean tag expression. `postfix` is None for match-all."""

    def __init__(self, postfix: Optional[List[Token]]):
        self.postfix = postfix

    @property
    def match_all(self):
        return self.postfix is None

    def evaluate(self, doc) -> bool:
        if self.postfix is None:
            return True
        stack = []
        for node in self.postfix:
            if node.type == TAG:
                stack.append(doc.has_tag(node.value))
            elif node.type == NOT:
                a = stack.pop() if stack else False
                stack.append(not a)
            else:
                b = stack.pop() if stack else False
                a = stack.pop() if stack else False
                stack.append((a and b) if node.type == AND else (a or b))
        return bool(stack.pop()) if stack else False


def parse_bool_expr(text) -> BoolExpr:
    s = str(text or "").strip()
    if not s:
        return BoolExpr(None)
    return BoolExpr(to_postfix(tokenize_expression(s)))


def parse_weights(text) -> Dict[str, float]:
    """Weight assignments as {tag: weight}; the last assignment wins."""
    weights = {}
    for m in _WEIGHT_RE.finditer(str(text or "")):
        tag = normalize_tag(m.group(1) or m.group(2) or "")
        if not tag:
            continue
        try:
            val = float(m.group(3))
        except ValueError:
            continue
        weights[tag] = val if math.isfinite(val) else 0.0
    return weights


def parse_tag_bundle(text) -> List[str]:
    out = []
    for m in _BUNDLE_RE.finditer(str(text or "")):
        tag = normalize_tag(m.group(1) or m.group(2) or m.group(3) or "")
        if tag:
            out.append(tag)
    return out
