# streamlit_app.py
import streamlit as st
from legv8_core import disassemble, format_instruction, SimpleLEGv8, DEFAULT_BASE_PC, DEFAULT_MAX_CYCLES, WORD_SIZE

st.set_page_config(page_title='LEGv8 Disassembler & Simulator', layout='wide')
st.title('LEGv8 Disassembler & Instruction-Set Simulator (Streamlit)')

# Sidebar - input
st.sidebar.header('Program Input')
upload = st.sidebar.file_uploader('Upload instruction file (one 32-bit binary string per line)', type=['txt', 'bin'])
text_area = st.sidebar.text_area('Or paste instructions here (one per line)')
base_pc = st.sidebar.text_input('Base address (decimal)', value=str(DEFAULT_BASE_PC))
try:
    base_pc_val = int(base_pc)
except ValueError:
    base_pc_val = DEFAULT_BASE_PC

if 'sim' not in st.session_state:
    st.session_state.sim = None
    st.session_state.listing = None
    st.session_state.trace = []

col1, col2 = st.columns([2, 3])
with col1:
    st.subheader('Load / Disassemble')
    if upload is not None:
        data = upload.getvalue().decode('utf-8')
        source_lines = data.splitlines()
    else:
        source_lines = text_area.splitlines()
    # blank lines from the paste area are not program input
    source_lines = [l for l in source_lines if l.strip()]

    if st.button('Disassemble'):
        listing = disassemble(source_lines, base_pc=base_pc_val)
        st.session_state.listing = listing
        st.session_state.sim = SimpleLEGv8(listing.program, base_pc=base_pc_val)
        st.session_state.trace = []
        st.success(f'Disassembled {len(listing.lines)} lines, {len(listing.program)} instructions loaded.')

    st.markdown('**Disassembly**')
    if st.session_state.listing is not None:
        st.code('\n'.join(st.session_state.listing.lines), language=None)
    else:
        st.info('Nothing disassembled. Paste instructions or upload a file and click Disassemble.')

with col2:
    st.subheader('Execution Controls')
    if st.session_state.sim is None:
        st.info('Simulator not initialized. Disassemble a program first.')
    else:
        sim: SimpleLEGv8 = st.session_state.sim
        cols = st.columns([1, 1, 1, 1, 1])
        if cols[0].button('Step'):
            st.session_state.trace.append(sim.step())
        if cols[1].button('Run 10'):
            st.session_state.trace.extend(sim.run_n(10))
        if cols[2].button('Run 100'):
            st.session_state.trace.extend(sim.run_n(100))
        if cols[3].button('Run until end'):
            st.session_state.trace.extend(sim.run(max_cycles=DEFAULT_MAX_CYCLES))
        if cols[4].button('Reset'):
            if st.session_state.listing is not None:
                st.session_state.sim = SimpleLEGv8(st.session_state.listing.program, base_pc=base_pc_val)
                st.session_state.trace = []
                st.success('Simulator reset')

        sim = st.session_state.sim
        st.write('---')
        st.write(f"PC = {sim.machine.pc}  | Cycle: {sim.machine.cycle}  | "
                 f"Executed: {sim.step_count}  | Halted: {sim.machine.halted}")

st.subheader('Execution Trace')
if st.session_state.trace:
    for t in st.session_state.trace[-20:]:
        dec = t.get('decoded')
        label = format_instruction(dec) if dec is not None and dec.mnemonic is not None else t['status']
        with st.expander(f"Cycle {t.get('step', '-')}  PC={t.get('pc', '?')}  {label}", expanded=False):
            if 'snapshot' in t:
                st.code(t['snapshot'], language=None)
            else:
                st.write(f"Not executed ({t['status']})")
else:
    st.info('No execution steps yet. Use step/run controls.')

st.subheader('Registers')
if st.session_state.sim is not None:
    regs = st.session_state.sim.machine.regs
    reg_table = []
    for i in range(0, 32, 4):
        reg_table.append({
            'r0': f"R{i}", 'v0': regs[i],
            'r1': f"R{i+1}", 'v1': regs[i+1],
            'r2': f"R{i+2}", 'v2': regs[i+2],
            'r3': f"R{i+3}", 'v3': regs[i+3],
        })
    st.table(reg_table)
else:
    st.info('Simulator not initialized.')

st.subheader('Memory (populated cells)')
if st.session_state.sim is not None:
    mem = st.session_state.sim.machine.memory
    if mem:
        mem_tbl = [{'row': a - a % WORD_SIZE, 'addr': a, 'value': v} for a, v in sorted(mem.items())]
        st.table(mem_tbl)
    else:
        st.info('Memory empty')

st.markdown('---')
st.caption('This front-end disassembles LEGv8 binary strings and steps through a functional execution model. '
           'It supports AND, ADD, SUB, EOR, ORR, ADDI, SUBI, LSL, LSR, ASR, STUR, LDUR, B, CBZ, CBNZ, MOVZ, MOVK, '
           'NOP and BREAK. There is no hard-wired zero register. STUR/LDUR addresses are register value plus the '
           'unscaled offset.')
