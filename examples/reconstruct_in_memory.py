"""Example: reconstruct a small Itanium class hierarchy from an in-memory program.

Builds ``Circle : Shape`` type infos, both vtables, a constructor and a
destructor calling the Shape ones, and one ``__dynamic_cast`` call site,
then runs every pass and prints the report.
"""

from classrecon.bridge import (
    CallArgument,
    CallSite,
    DataBlock,
    Function,
    FunctionPrototype,
    HighFunction,
    HighParam,
    InMemoryProgram,
    Parameter,
    RefType,
)
from classrecon.core import AnalysisSession, ReconConfig
from classrecon.core.display import EventPrinter

program = InMemoryProgram(pointer_size=8)

# cxxabi type_info vtables, recognized by symbol
program.add_symbol("_ZTVN10__cxxabiv117__class_type_infoE", 0x1000)
program.add_symbol("_ZTVN10__cxxabiv120__si_class_type_infoE", 0x1100)

SHAPE, CIRCLE = 0x2000, 0x2100
program.write_pointer(SHAPE, 0x1010)
program.write_pointer(SHAPE + 8, 0x3000)
program.write_string(0x3000, "5Shape")
program.write_pointer(CIRCLE, 0x1110)
program.write_pointer(CIRCLE + 8, 0x3010)
program.write_pointer(CIRCLE + 16, SHAPE)
program.write_string(0x3010, "6Circle")

CTOR, DTOR, SHAPE_CTOR, SHAPE_DTOR, USER, CAST = 0x6000, 0x6100, 0x6200, 0x6300, 0x6400, 0x9000
for address, name in [
    (CTOR, "FUN_00006000"),
    (DTOR, "FUN_00006100"),
    (SHAPE_CTOR, "FUN_00006200"),
    (SHAPE_DTOR, "FUN_00006300"),
    (USER, "FUN_00006400"),
]:
    program.add_function(Function(address=address, name=name, size=0x80))

# vtable for Shape: offset-to-top, type_info, one slot (the destructor)
program.add_symbol("_ZTV5Shape", 0x4100)
program.write_pointer(0x4100, 0)
program.write_pointer(0x4108, SHAPE)
program.write_pointer(0x4110, SHAPE_DTOR)
program.write_pointer(0x4118, 0)
program.add_data(DataBlock(address=0x4100, length=0x18, name="_ZTV5Shape"))
program.add_reference(SHAPE_CTOR + 0x10, 0x4110, RefType.WRITE)
program.add_reference(SHAPE_DTOR + 0x10, 0x4110, RefType.WRITE)

# vtable for Circle: offset-to-top, type_info, one slot (the destructor)
program.add_symbol("_ZTV6Circle", 0x4000)
program.write_pointer(0x4000, 0)
program.write_pointer(0x4008, CIRCLE)
program.write_pointer(0x4010, DTOR)
program.write_pointer(0x4018, 0)
program.add_data(DataBlock(address=0x4000, length=0x18, name="_ZTV6Circle"))
program.add_reference(CTOR + 0x10, 0x4010, RefType.WRITE)
program.add_reference(DTOR + 0x10, 0x4010, RefType.WRITE)


def this_call(address, target):
    return CallSite(address=address, target=target, arguments=(CallArgument(origin="this"),))


this_param = (HighParam(name="this", origin="this"),)
program.set_high_function(
    CTOR, HighFunction(function=CTOR, parameters=this_param, call_sites=(this_call(CTOR + 4, SHAPE_CTOR),))
)
program.set_high_function(
    DTOR,
    HighFunction(
        function=DTOR,
        parameters=this_param,
        call_sites=(this_call(DTOR + 4, SHAPE_DTOR), this_call(DTOR + 0x20, 0x9100)),
    ),
)

program.add_function(
    Function(
        address=CAST,
        name="__dynamic_cast",
        size=0x40,
        is_default_name=False,
        prototype=FunctionPrototype(
            return_type="void *",
            parameters=(
                Parameter("src_ptr", "void *", "RDI"),
                Parameter("src_type", "__class_type_info *", "RSI"),
                Parameter("dst_type", "__class_type_info *", "RDX"),
                Parameter("src2dst", "ptrdiff_t", "RCX"),
            ),
        ),
    )
)
program.add_reference(USER + 0x20, CAST, RefType.CALL)
program.set_register_constant(USER + 0x20, "RSI", SHAPE)
program.set_register_constant(USER + 0x20, "RDX", CIRCLE)

config = ReconConfig(show_report=True)
with AnalysisSession(config, program=program, event_callback=EventPrinter()) as session:
    classes = session.load([CIRCLE])
    print(f"Loaded: {', '.join(cls.name for cls in classes)}")
    session.run()

circle = session.store.get(CIRCLE)
print(f"Constructors of {circle.name}: {[hex(a) for a in session.store.constructors_of(circle)]}")
print(f"Destructors of Shape: {[hex(a) for a in session.store.destructors_of(SHAPE)]}")
override = program.override_at(USER + 0x20)
if override is not None:
    print(f"Override at 0x{override.call_address:x}: {override.signature.format()}")
