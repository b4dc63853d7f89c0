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
from ..xq_builtins import BUILTINS, BuiltinFunction
from ..xq_env import Environment
from ..xq_errors import (
    DivModByZero,
    IncompatibleBinaryOperator,
    ObjectIndexByNonString,
    ObjectNonStringKey,
    SliceOnNonArrayNorString,
    UnaryOnNonNumeric,
    UndefinedFunction,
    UndefinedVariable,
    UserError,
)
from ..xq_eval import Evaluator


def seq(*nodes):
    return Sequence(tuple(nodes))


def lit(*values):
    if len(values) == 1:
        return Literal(values[0])
    return seq(*(Literal(value) for value in values))


def call(name, *args):
    return FunctionCall(name, tuple(args))


class EvaluatorTestCase(unittest.TestCase):
    def setUp(self):
        self.evaluator = Evaluator()
        self.emitted = []

    def run_node(self, node, subject=None, env=None):
        self.emitted = []
        self.evaluator.evaluate(node, env if env is not None else Environment.root(subject), self.emitted.append)
        return self.emitted


class TestSpecProperties(EvaluatorTestCase):
    def test_identity_emits_subject_once(self):
        for value in (None, True, 0, 1.5, "s", [1, [2]], {"a": {"b": None}}):
            self.assertEqual(self.run_node(Identity(), value), [value])

    def test_field_access(self):
        self.assertEqual(self.run_node(Field("a", Identity()), {"a": 1}), [1])
        self.assertEqual(self.run_node(Field("b", Identity()), {"a": 1}), [None])

    def test_numeric_index_on_object_fails(self):
        with self.assertRaises(ObjectIndexByNonString):
            self.run_node(Index(Identity(), Literal(0)), {"a": 1})

    def test_iteration_order(self):
        self.assertEqual(self.run_node(IndexAll(Identity()), [1, 2, 3]), [1, 2, 3])

    def test_division_by_zero_emits_nothing(self):
        with self.assertRaises(DivModByZero):
            self.run_node(BinaryOp("/", Literal(1), Literal(0)))
        self.assertEqual(self.emitted, [])

    def test_numeric_object_key_fails(self):
        with self.assertRaises(ObjectNonStringKey):
            self.run_node(ObjectLiteral(((Literal(1), Literal(2)),)))

    def test_type_mismatch_names_operator_and_operands(self):
        with self.assertRaises(IncompatibleBinaryOperator) as ctx:
            self.run_node(BinaryOp("+", Literal("a"), Literal(1)))
        self.assertEqual(ctx.exception, IncompatibleBinaryOperator("+", "a", 1))

    def test_comma_ordering(self):
        node = seq(lit(1, 2), lit(3, 4))
        self.assertEqual(self.run_node(node), [1, 2, 3, 4])

    def test_optional_swallows_error(self):
        node = OptionalMarker(BinaryOp("/", Literal(1), Literal(0)))
        self.assertEqual(self.run_node(node), [])

    def test_limit_stops_unbounded_generator(self):
        produced = []

        def naturals(evaluator, env, args, emit):
            n = 0
            while True:
                produced.append(n)
                emit(n)
                n += 1

        builtins = dict(BUILTINS)
        builtins[("naturals", 0)] = BuiltinFunction("naturals", 0, naturals)
        self.evaluator = Evaluator(builtins)
        node = call("limit", Literal(3), call("naturals"))
        self.assertEqual(self.run_node(node), [0, 1, 2])
        self.assertEqual(produced, [0, 1, 2])

    def test_binding_is_not_visible_to_sibling_stages(self):
        node = seq(AsBinding(Literal(1), "x", VarRef("x")), VarRef("x"))
        with self.assertRaises(UndefinedVariable):
            self.run_node(node)
        self.assertEqual(self.emitted, [1])

    def test_function_sees_definition_site_bindings(self):
        node = AsBinding(
            Literal(1),
            "x",
            FunctionDef("f", (), VarRef("x"), AsBinding(Literal(2), "x", call("f"))),
        )
        self.assertEqual(self.run_node(node), [1])


class TestOperators(EvaluatorTestCase):
    def test_binary_operands_form_cartesian_product(self):
        node = BinaryOp("+", lit(1, 2), lit(10, 20))
        self.assertEqual(self.run_node(node), [11, 12, 21, 22])

    def test_object_fields_form_cartesian_product(self):
        node = ObjectLiteral(((Literal("a"), lit(1, 2)), (Literal("b"), lit(3, 4))))
        self.assertEqual(
            self.run_node(node),
            [{"a": 1, "b": 3}, {"a": 1, "b": 4}, {"a": 2, "b": 3}, {"a": 2, "b": 4}],
        )

    def test_array_literal_collects_outputs(self):
        self.assertEqual(self.run_node(ArrayLiteral(lit(1, 2, 3))), [[1, 2, 3]])
        self.assertEqual(self.run_node(ArrayLiteral(None)), [[]])
        self.assertEqual(self.run_node(ArrayLiteral(call("empty"))), [[]])

    def test_negation(self):
        self.assertEqual(self.run_node(UnaryOp("-", Identity()), 4), [-4])
        with self.assertRaises(UnaryOnNonNumeric):
            self.run_node(UnaryOp("-", Identity()), "x")

    def test_and_or_short_circuit(self):
        failing = BinaryOp("/", Literal(1), Literal(0))
        self.assertEqual(self.run_node(BinaryOp("and", Literal(False), failing)), [False])
        self.assertEqual(self.run_node(BinaryOp("or", Literal(1), failing)), [True])
        self.assertEqual(self.run_node(BinaryOp("and", lit(True, None), lit(1, False))), [True, False, False])

    def test_alternative(self):
        self.assertEqual(self.run_node(BinaryOp("//", lit(None, False), Literal(3))), [3])
        self.assertEqual(self.run_node(BinaryOp("//", lit(1, None, 2), Literal(3))), [1, 2])
        failing = BinaryOp("/", Literal(1), Literal(0))
        self.assertEqual(self.run_node(BinaryOp("//", failing, Literal(5))), [5])

    def test_slice_of_null_fails(self):
        with self.assertRaises(SliceOnNonArrayNorString):
            self.run_node(Slice(Identity(), Literal(0), Literal(1)), None)

    def test_outputs_before_failure_stay_delivered(self):
        node = seq(Literal(1), BinaryOp("/", Literal(1), Literal(0)))
        with self.assertRaises(DivModByZero):
            self.run_node(node)
        self.assertEqual(self.emitted, [1])


class TestControlFlow(EvaluatorTestCase):
    def test_if_runs_once_per_condition_value(self):
        node = IfElse(lit(True, False), Literal(1), Literal(2))
        self.assertEqual(self.run_node(node), [1, 2])
        self.assertEqual(self.run_node(IfElse(Literal(None), Literal(1), None), "same"), ["same"])

    def test_try_catch_receives_error_value(self):
        node = TryCatch(call("error", Literal({"code": 7})), Field("code", Identity()))
        self.assertEqual(self.run_node(node), [7])
        node = TryCatch(BinaryOp("/", Literal(1), Literal(0)), Identity())
        self.assertEqual(self.run_node(node), ["Cannot divide/modulo by zero"])

    def test_try_stops_body_at_first_error(self):
        node = TryCatch(seq(Literal(1), call("error", Literal("x")), Literal(3)), Identity())
        self.assertEqual(self.run_node(node), [1, "x"])

    def test_try_does_not_catch_downstream_errors(self):
        raise_on_two = IfElse(
            BinaryOp("==", Identity(), Literal(2)),
            call("error", Literal("late")),
            Identity(),
        )
        node = Pipe(TryCatch(lit(1, 2), Literal("caught")), raise_on_two)
        with self.assertRaises(UserError) as ctx:
            self.run_node(node)
        self.assertEqual(ctx.exception.value, "late")
        self.assertEqual(self.emitted, [1])

    def test_nested_try_downstream_error_reaches_outer_try(self):
        inner = Pipe(TryCatch(Literal(1), Literal("inner")), call("error", Literal("boom")))
        node = TryCatch(inner, Identity())
        self.assertEqual(self.run_node(node), ["boom"])

    def test_reduce(self):
        node = Reduce(lit(1, 2, 3), "x", Literal(0), BinaryOp("+", Identity(), VarRef("x")))
        self.assertEqual(self.run_node(node), [6])
        empty_update = Reduce(lit(1, 2), "x", Literal(0), call("empty"))
        self.assertEqual(self.run_node(empty_update), [None])

    def test_foreach(self):
        update = BinaryOp("+", Identity(), VarRef("x"))
        self.assertEqual(self.run_node(Foreach(lit(1, 2, 3), "x", Literal(0), update, None)), [1, 3, 6])
        extract = ArrayLiteral(seq(VarRef("x"), Identity()))
        self.assertEqual(
            self.run_node(Foreach(lit(1, 2), "x", Literal(0), update, extract)),
            [[1, 1], [2, 3]],
        )

    def test_label_break(self):
        node = Label("out", seq(Literal(1), Literal(2), Break("out"), Literal(3)))
        self.assertEqual(self.run_node(node), [1, 2])

    def test_break_is_not_caught_by_try(self):
        node = Label("out", TryCatch(seq(Literal(1), Break("out"), Literal(2)), Literal(99)))
        self.assertEqual(self.run_node(node), [1])


class TestFunctions(EvaluatorTestCase):
    def test_filter_argument_runs_in_caller_scope(self):
        body = AsBinding(Literal(3), "x", call("g"))
        node = AsBinding(Literal(1), "x", FunctionDef("f", ("g",), body, call("f", VarRef("x"))))
        self.assertEqual(self.run_node(node), [1])

    def test_filter_argument_sees_callee_subject(self):
        node = FunctionDef("f", ("g",), Pipe(Literal(10), call("g")), call("f", BinaryOp("+", Identity(), Literal(1))))
        self.assertEqual(self.run_node(node, 0), [11])

    def test_value_parameters_bind_each_value(self):
        node = FunctionDef(
            "f",
            ("$a", "$b"),
            ArrayLiteral(seq(VarRef("a"), VarRef("b"))),
            call("f", lit(1, 2), lit(3, 4)),
        )
        self.assertEqual(self.run_node(node), [[1, 3], [1, 4], [2, 3], [2, 4]])

    def test_value_parameter_is_callable_as_filter(self):
        node = FunctionDef("f", ("$a",), BinaryOp("+", call("a"), Literal(1)), call("f", Literal(5)))
        self.assertEqual(self.run_node(node), [6])

    def test_recursive_function(self):
        body = IfElse(
            BinaryOp("<=", Identity(), Literal(1)),
            Literal(1),
            BinaryOp("*", Identity(), Pipe(BinaryOp("-", Identity(), Literal(1)), call("fact"))),
        )
        node = FunctionDef("fact", (), body, call("fact"))
        self.assertEqual(self.run_node(node, 5), [120])

    def test_arity_selects_definition(self):
        node = FunctionDef("f", (), Literal(0), FunctionDef("f", ("x",), Literal(1), seq(call("f"), call("f", Identity()))))
        self.assertEqual(self.run_node(node), [0, 1])

    def test_undefined_function(self):
        with self.assertRaises(UndefinedFunction) as ctx:
            self.run_node(call("nope"))
        self.assertEqual(ctx.exception, UndefinedFunction("nope", 0))

    def test_builtins_are_reachable(self):
        self.assertEqual(self.run_node(call("length"), [1, 2]), [2])


if __name__ == "__main__":
    unittest.main()
