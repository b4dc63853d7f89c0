import unittest

from ..xq_ast import FunctionCall, Literal
from ..xq_builtins import BUILTINS
from ..xq_compiler import XQCompileError, compile_program, prelude_definitions


class TestXQCompiler(unittest.TestCase):
    def test_prelude_is_linked(self):
        program = compile_program("map(. + 1)")
        names = {definition.name for definition in program.definitions}
        self.assertIn("map", names)
        self.assertIn("select", names)
        self.assertIs(program.definitions, prelude_definitions())

    def test_prelude_does_not_shadow_natives(self):
        for definition in prelude_definitions():
            with self.subTest(name=definition.name):
                self.assertNotIn((definition.name, len(definition.params)), BUILTINS)

    def test_accepts_parsed_programs(self):
        program = compile_program(FunctionCall("length", ()))
        self.assertEqual(program.body, FunctionCall("length", ()))
        self.assertEqual(compile_program(Literal(1)).variables, ())

    def test_undefined_function(self):
        with self.assertRaises(XQCompileError) as ctx:
            compile_program("nope")
        self.assertIn("nope/0 is not defined", str(ctx.exception))

    def test_wrong_arity(self):
        with self.assertRaises(XQCompileError) as ctx:
            compile_program("map(1; 2)")
        self.assertIn("map/2", str(ctx.exception))

    def test_undefined_variable(self):
        with self.assertRaises(XQCompileError) as ctx:
            compile_program("$missing")
        self.assertIn("$missing is not defined", str(ctx.exception))

    def test_caller_variables(self):
        program = compile_program("$name", ["name"])
        self.assertEqual(program.variables, ("name",))

    def test_binding_scope_ends_with_its_body(self):
        compile_program("(1 as $x | $x), 2")
        with self.assertRaises(XQCompileError):
            compile_program("(1 as $x | $x), $x")

    def test_reduce_variable_is_not_visible_in_init(self):
        compile_program("reduce .[] as $x (0; . + $x)")
        with self.assertRaises(XQCompileError):
            compile_program("reduce .[] as $x ($x; .)")

    def test_parameters_and_recursion(self):
        compile_program("def f($a; g): $a, a, g, f($a; g); f(1; 2)")
        with self.assertRaises(XQCompileError):
            compile_program("def f(g): g; g")

    def test_break_requires_label(self):
        compile_program("label $out | 1, break $out")
        with self.assertRaises(XQCompileError) as ctx:
            compile_program("break $out")
        self.assertIn("$*label-out", str(ctx.exception))

    def test_compile_errors_are_value_errors(self):
        with self.assertRaises(ValueError):
            compile_program("undefined_thing(1)")


if __name__ == "__main__":
    unittest.main()
