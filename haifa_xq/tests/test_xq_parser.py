import unittest

from ..xq_ast import (
    ArrayLiteral,
    AsBinding,
    BinaryOp,
    Break,
    Field,
    Foreach,
    FunctionCall,
    FunctionDef,
    Identity,
    IfElse,
    Index,
    IndexAll,
    Label,
    Literal,
    ObjectLiteral,
    OptionalMarker,
    Pipe,
    Reduce,
    Sequence,
    Slice,
    TryCatch,
    UnaryOp,
    VarRef,
)
from ..xq_parser import XQSyntaxError, parse_definitions, parse_jq_program


class TestXQParser(unittest.TestCase):
    def test_empty_program_is_identity(self):
        self.assertEqual(parse_jq_program(""), Identity())
        self.assertEqual(parse_jq_program("  # only a comment\n"), Identity())

    def test_field_chain(self):
        self.assertEqual(parse_jq_program(".foo.bar"), Field("bar", Field("foo", Identity())))
        self.assertEqual(parse_jq_program('."foo-bar"'), Field("foo-bar", Identity()))
        self.assertEqual(parse_jq_program(".end"), Field("end", Identity()))

    def test_index_and_slice(self):
        self.assertEqual(parse_jq_program(".[0]"), Index(Identity(), Literal(0)))
        self.assertEqual(parse_jq_program(".a.[0]"), Index(Field("a", Identity()), Literal(0)))
        self.assertEqual(parse_jq_program(".[1:3]"), Slice(Identity(), Literal(1), Literal(3)))
        self.assertEqual(parse_jq_program(".[:2]"), Slice(Identity(), None, Literal(2)))
        self.assertEqual(parse_jq_program(".[2:]"), Slice(Identity(), Literal(2), None))
        self.assertEqual(parse_jq_program(".[-1]"), Index(Identity(), Literal(-1)))

    def test_iterate_and_optional(self):
        self.assertEqual(parse_jq_program(".[]?"), OptionalMarker(IndexAll(Identity())))
        self.assertEqual(parse_jq_program(".a?"), OptionalMarker(Field("a", Identity())))

    def test_recurse_shorthand(self):
        self.assertEqual(parse_jq_program(".."), FunctionCall("recurse", ()))

    def test_literals(self):
        self.assertEqual(parse_jq_program("1.5"), Literal(1.5))
        self.assertEqual(parse_jq_program("1e2"), Literal(100))
        self.assertEqual(parse_jq_program('"a\\nb"'), Literal("a\nb"))
        self.assertEqual(parse_jq_program("null"), Literal(None))
        self.assertEqual(parse_jq_program("-2"), Literal(-2))

    def test_arithmetic_precedence(self):
        expected = BinaryOp("+", Literal(1), BinaryOp("*", Literal(2), Literal(3)))
        self.assertEqual(parse_jq_program("1 + 2 * 3"), expected)
        self.assertEqual(
            parse_jq_program("10 - 2 - 3"),
            BinaryOp("-", BinaryOp("-", Literal(10), Literal(2)), Literal(3)),
        )

    def test_unary_minus(self):
        self.assertEqual(parse_jq_program("-.a"), UnaryOp("-", Field("a", Identity())))

    def test_pipe_binds_looser_than_comma(self):
        expected = Pipe(Sequence((Literal(1), Literal(2))), Literal(3))
        self.assertEqual(parse_jq_program("1, 2 | 3"), expected)

    def test_alternative_is_right_associative(self):
        expected = BinaryOp("//", Field("a", Identity()), BinaryOp("//", Field("b", Identity()), Literal(1)))
        self.assertEqual(parse_jq_program(".a // .b // 1"), expected)

    def test_boolean_operators(self):
        expected = BinaryOp(
            "or",
            BinaryOp("and", BinaryOp("<", Literal(1), Literal(2)), Literal(True)),
            Literal(False),
        )
        self.assertEqual(parse_jq_program("1 < 2 and true or false"), expected)

    def test_as_binding(self):
        expected = AsBinding(Field("a", Identity()), "x", Pipe(VarRef("x"), Literal(1)))
        self.assertEqual(parse_jq_program(".a as $x | $x | 1"), expected)

    def test_function_definition(self):
        program = parse_jq_program("def f($a; g): $a + g; f(1; 2)")
        self.assertEqual(
            program,
            FunctionDef(
                "f",
                ("$a", "g"),
                BinaryOp("+", VarRef("a"), FunctionCall("g", ())),
                FunctionCall("f", (Literal(1), Literal(2))),
            ),
        )

    def test_object_construction(self):
        program = parse_jq_program('{a, $b, "c": 1, (.k): 2, if: 3}')
        self.assertEqual(
            program,
            ObjectLiteral(
                (
                    (Literal("a"), Field("a", Identity())),
                    (Literal("b"), VarRef("b")),
                    (Literal("c"), Literal(1)),
                    (Field("k", Identity()), Literal(2)),
                    (Literal("if"), Literal(3)),
                )
            ),
        )

    def test_object_value_allows_pipe(self):
        program = parse_jq_program("{a: .x | length}")
        self.assertEqual(
            program,
            ObjectLiteral(((Literal("a"), Pipe(Field("x", Identity()), FunctionCall("length", ()))),)),
        )

    def test_array_construction(self):
        self.assertEqual(parse_jq_program("[]"), ArrayLiteral(None))
        self.assertEqual(parse_jq_program("[.[]]"), ArrayLiteral(IndexAll(Identity())))

    def test_if_elif_chain(self):
        program = parse_jq_program("if . then 1 elif .a then 2 end")
        self.assertEqual(
            program,
            IfElse(Identity(), Literal(1), IfElse(Field("a", Identity()), Literal(2), None)),
        )

    def test_try_catch(self):
        self.assertEqual(
            parse_jq_program("try .a catch 1"),
            TryCatch(Field("a", Identity()), Literal(1)),
        )
        self.assertEqual(parse_jq_program("try error"), TryCatch(FunctionCall("error", ()), None))

    def test_reduce_and_foreach(self):
        update = BinaryOp("+", Identity(), VarRef("x"))
        self.assertEqual(
            parse_jq_program("reduce .[] as $x (0; . + $x)"),
            Reduce(IndexAll(Identity()), "x", Literal(0), update),
        )
        self.assertEqual(
            parse_jq_program("foreach .[] as $x (0; . + $x; [$x])"),
            Foreach(IndexAll(Identity()), "x", Literal(0), update, ArrayLiteral(VarRef("x"))),
        )

    def test_label_break(self):
        program = parse_jq_program("label $out | 1, break $out")
        self.assertEqual(program, Label("out", Sequence((Literal(1), Break("out")))))

    def test_parse_definitions(self):
        definitions = parse_definitions("def a: 1; def b(f): f;")
        self.assertEqual([d.name for d in definitions], ["a", "b"])
        self.assertEqual(definitions[1].params, ("f",))

    def test_syntax_errors(self):
        for source in (
            ".a |",
            "1 == 2 == 3",
            "(1",
            "if . then 1",
            "{1: 2}",
            "@base64",
            "then",
            "def if: 1; 2",
        ):
            with self.subTest(source=source):
                with self.assertRaises(XQSyntaxError):
                    parse_jq_program(source)

    def test_unsupported_syntax_is_rejected(self):
        with self.assertRaises(XQSyntaxError) as ctx:
            parse_jq_program(".a |= 1")
        self.assertIn("not supported", str(ctx.exception))
        with self.assertRaises(XQSyntaxError):
            parse_jq_program('"\\(.a)"')

    def test_escaped_backslash_before_paren_is_a_plain_string(self):
        self.assertEqual(parse_jq_program(r'"a\\(b"'), Literal("a\\(b"))
        with self.assertRaises(XQSyntaxError):
            parse_jq_program(r'"a\\\(b)"')


if __name__ == "__main__":
    unittest.main()
