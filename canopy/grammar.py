"""
canopy/grammar.py
=================

Parsimonious PEG grammar for the canopy script language, a small
Ruby-flavoured language with the branch constructs coverage is measured
on (``if``/``unless``, ``while``/``until``, ``and``/``or``/``&&``/``||``
and ``case``/``when``).

Rules are ordered from loosest to tightest binding.  Every rule that a
visitor method handles is a sequence, choice or terminal: parsimonious
collapses single-reference rules (``a = b``) into the referenced rule,
which would hide them from the visitor.
"""

from __future__ import annotations

from parsimonious.grammar import Grammar

__all__ = ["SCRIPT_GRAMMAR", "KEYWORDS"]

KEYWORDS = (
    "if", "unless", "while", "until", "case", "when", "else", "elsif",
    "end", "then", "do", "and", "or", "not", "true", "false", "nil",
    "def", "return", "break", "next",
)

SCRIPT_GRAMMAR = Grammar(r'''
    # ─────────────────────────────────────────────────────────────
    # Program structure
    # ─────────────────────────────────────────────────────────────

    program             = body ws
    body                = sep* statements? sep*
    statements          = stmt (sep+ stmt)*
    stmt                = _ stmt_expr
    stmt_expr           = expr modifier*
    modifier            = _ modifier_kw kw_end _ expr
    modifier_kw         = "if" / "unless" / "while" / "until"

    # ─────────────────────────────────────────────────────────────
    # Operators, loosest first
    # ─────────────────────────────────────────────────────────────

    expr                = not_expr (_ andor_op kw_end ws not_expr)*
    andor_op            = "and" / "or"
    not_expr            = not_kw / assign_expr
    not_kw              = "not" kw_end _ not_expr

    assign_expr         = assignment / ternary
    assignment          = identifier _ assign_op ws assign_expr
    assign_op           = "+=" / "-=" / "*=" / "||=" / "&&=" / ~r"=(?![=~>])"

    ternary             = range_expr ternary_tail?
    ternary_tail        = _ "?" ws ternary _ ":" ws ternary

    range_expr          = oror_expr range_tail?
    range_tail          = _ range_op ws oror_expr
    range_op            = "..." / ".."

    oror_expr           = andand_expr (_ "||" !"=" ws andand_expr)*
    andand_expr         = equality_expr (_ "&&" !"=" ws equality_expr)*

    equality_expr       = comparison_expr equality_tail?
    equality_tail       = _ equality_op ws comparison_expr
    equality_op         = "<=>" / "===" / "==" / "!="

    comparison_expr     = shift_expr (_ comparison_op ws shift_expr)*
    comparison_op       = "<=" / ">=" / ~r"<(?![<=])" / ~r">(?!=)"

    shift_expr          = additive_expr (_ shift_op ws additive_expr)*
    shift_op            = "<<"

    additive_expr       = multiplicative_expr (_ additive_op ws multiplicative_expr)*
    additive_op         = ~r"[+-](?!=)"

    multiplicative_expr = unary_expr (_ mul_op ws unary_expr)*
    mul_op              = ~r"\*(?![*=])" / "/" / "%"

    unary_expr          = (unary_op unary_expr) / power_expr
    unary_op            = ~r"!(?!=)" / "-"

    power_expr          = postfix_expr power_tail?
    power_tail          = _ "**" ws unary_expr

    # ─────────────────────────────────────────────────────────────
    # Method calls, indexing and blocks
    # ─────────────────────────────────────────────────────────────

    postfix_expr        = primary postfix*
    postfix             = method_call / index_call
    method_call         = _ "." ws method_name call_args? block?
    method_name         = ~r"===|==|[a-zA-Z_][a-zA-Z0-9_]*[?!]?"
    index_call          = "[" ws arg_list ws "]"
    call_args           = "(" ws arg_list? ws ")"
    arg_list            = assign_expr (ws "," ws assign_expr)*

    block               = _ (brace_block / do_block)
    brace_block         = "{" ws block_params? body ws "}"
    do_block            = "do" kw_end _ block_params? body ws "end" kw_end
    block_params        = "|" ws param_list? ws "|"
    param_list          = identifier (ws "," ws identifier)*

    # ─────────────────────────────────────────────────────────────
    # Primaries
    # ─────────────────────────────────────────────────────────────

    primary             = if_expr / unless_expr / while_expr / until_expr
                        / case_expr / def_expr / jump_expr / paren_expr
                        / array / number / string / nil_lit / true_lit
                        / false_lit / constant / command_call / fcall
                        / identifier

    if_expr             = "if" kw_end _ expr then_sep body elsif_clause* else_clause? ws "end" kw_end
    elsif_clause        = ws "elsif" kw_end _ expr then_sep body
    else_clause         = ws "else" kw_end body
    unless_expr         = "unless" kw_end _ expr then_sep body else_clause? ws "end" kw_end
    while_expr          = "while" kw_end _ expr loop_sep body ws "end" kw_end
    until_expr          = "until" kw_end _ expr loop_sep body ws "end" kw_end
    then_sep            = (_ "then" kw_end) / sep
    loop_sep            = (_ "do" kw_end) / sep

    case_expr           = "case" kw_end _ expr sep* when_clause+ else_clause? ws "end" kw_end
    when_clause         = ws "when" kw_end _ arg_list then_sep body

    def_expr            = "def" kw_end _ method_name params? body ws "end" kw_end
    params              = "(" ws param_list? ws ")"

    jump_expr           = jump_kw kw_end jump_value?
    jump_kw             = "break" / "next" / "return"
    jump_value          = _ !keyword expr

    paren_expr          = "(" ws body ws ")"
    array               = "[" ws array_items? ws "]"
    array_items         = arg_list (ws ",")?

    number              = ~r"\d[\d_]*(?:\.\d+)?"
    string              = ~r'"(?:[^"\\]|\\.)*"' / ~r"'(?:[^'\\]|\\.)*'"
    nil_lit             = "nil" kw_end
    true_lit            = "true" kw_end
    false_lit           = "false" kw_end
    constant            = ~r"[A-Z][a-zA-Z0-9_]*"

    command_call        = command_name kw_end !"(" command_args?
    command_name        = "puts" / "print" / "raise" / "p"
    command_args        = ~r"[ \t]+" !keyword arg_list
    fcall               = identifier ((call_args fcall_block?) / fcall_block)
    fcall_block         = _ brace_block

    # ─────────────────────────────────────────────────────────────
    # Lexical
    # ─────────────────────────────────────────────────────────────

    identifier          = !keyword ~r"[a-z_][a-zA-Z0-9_]*(?:[?!](?!=))?"
    keyword             = ~r"(?:if|unless|while|until|case|when|elsif|else|end|then|do|and|or|not|true|false|nil|def|return|break|next)(?![a-zA-Z0-9_?!])"
    kw_end              = !~r"[a-zA-Z0-9_?!]"
    sep                 = ~r"[ \t]*(?:#[^\n]*)?(?:;|\r?\n)"
    _                   = ~r"[ \t]*"
    ws                  = ~r"(?:\s|#[^\n]*)*"
''')
